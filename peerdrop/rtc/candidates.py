"""
ICE candidate helpers.

aiortc gathers every local candidate while setting the local description and
writes them into the SDP instead of emitting them one by one, so outbound
candidates are recovered from the ``a=candidate:`` lines of that SDP.
"""

from typing import Any

from aioice.candidate import Candidate
from aiortc import RTCIceCandidate
from aiortc.rtcicetransport import candidate_from_aioice

from peerdrop.exceptions import EnvelopeError

CANDIDATE_PREFIX = "candidate:"


def extract_candidates(sdp: str) -> list[dict[str, Any]]:
    """
    Return one candidate-init dict per ``a=candidate:`` line in ``sdp``.

    ``sdpMLineIndex`` is the index of the enclosing ``m=`` section and
    ``sdpMid`` its ``a=mid`` value when present.
    """
    sections: list[dict[str, Any]] = []
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append({"mid": None, "candidates": []})
        elif not sections:
            continue
        elif line.startswith("a=mid:"):
            sections[-1]["mid"] = line[len("a=mid:") :]
        elif line.startswith(f"a={CANDIDATE_PREFIX}"):
            sections[-1]["candidates"].append(line[len("a=") :])

    candidates = []
    for index, section in enumerate(sections):
        for candidate in section["candidates"]:
            candidates.append(
                {
                    "candidate": candidate,
                    "sdpMid": section["mid"],
                    "sdpMLineIndex": index,
                }
            )
    return candidates


def parse_candidate(candidate_init: dict[str, Any]) -> RTCIceCandidate:
    """Build an ``RTCIceCandidate`` from a candidate-init dict."""
    candidate_str = candidate_init.get("candidate")
    if not isinstance(candidate_str, str) or not candidate_str:
        raise EnvelopeError("Candidate-init has no candidate string")
    if candidate_str.startswith(CANDIDATE_PREFIX):
        candidate_str = candidate_str[len(CANDIDATE_PREFIX) :]
    # foundation component transport priority address port "typ" type
    if len(candidate_str.split()) < 8:
        raise EnvelopeError(f"Truncated ICE candidate {candidate_str!r}")

    try:
        candidate = candidate_from_aioice(Candidate.from_sdp(candidate_str))
    except (ValueError, IndexError) as e:
        raise EnvelopeError(f"Invalid ICE candidate {candidate_str!r}: {e}")

    sdp_mid = candidate_init.get("sdpMid")
    sdp_mline_index = candidate_init.get("sdpMLineIndex")
    if sdp_mid is None and sdp_mline_index is None:
        sdp_mline_index = 0
    candidate.sdpMid = sdp_mid
    candidate.sdpMLineIndex = sdp_mline_index
    return candidate
