# Default ICE servers for NAT traversal
DEFAULT_ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
]

# Label of the single data channel the caller opens
DATA_CHANNEL_LABEL = "data"

# Signal relay client retry schedule
SIGNAL_MAX_RETRIES = 20
SIGNAL_RETRY_DELAY = 0.1  # seconds

# Relay websocket settings
DEFAULT_RELAY_PORT = 8080
DEFAULT_RELAY_URL = f"ws://127.0.0.1:{DEFAULT_RELAY_PORT}/"
RELAY_MESSAGE_QUEUE_SIZE = 1024
RELAY_MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB, SDP offers stay well below this
RELAY_SEND_TIMEOUT = 5.0  # seconds a single client may hold up a forward
INBOUND_ENVELOPE_BUFFER = 256

# Transfer framing
CHUNK_SIZE = 16 * 1024  # 16KB, below the common SCTP message size limit

# Flow control on the data channel
BUFFERED_AMOUNT_LOW_THRESHOLD = 1024 * 1024  # 1MiB, resume below this
MAX_BUFFERED_AMOUNT = 16 * 1024 * 1024  # 16MiB, pause above this
DRAIN_POLL_INTERVAL = 0.05  # seconds, fallback when no drain event fires

# Structured frame message types
MESSAGE_TYPE_FILE_INFO = "file-info"
MESSAGE_TYPE_FILE_COMPLETE = "file-complete"

DEFAULT_MEDIA_TYPE = "application/octet-stream"

# Length of the random part of a peer identity, in bytes
PEER_ID_RANDOM_BYTES = 16

# RTCPeerConnection.connectionState values
CONNECTION_STATE_CONNECTED = "connected"
CONNECTION_STATE_DISCONNECTED = "disconnected"
CONNECTION_STATE_FAILED = "failed"
CONNECTION_STATE_CLOSED = "closed"

# RTCDataChannel.readyState values
DATA_CHANNEL_OPEN = "open"
