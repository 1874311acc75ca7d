from typing import Iterable, Optional


def elect_offerer(peer_a: str, peer_b: str) -> str:
    """Return the peer that must send the SDP offer for the pair.

    The lexicographically smaller id offers, the other waits for the offer.
    Both sides evaluate this independently and reach the same answer, so
    there is no glare.
    """
    if peer_a == peer_b:
        raise ValueError(f"Cannot elect an offerer between a peer and itself: {peer_a}")
    return min(peer_a, peer_b)


def should_offer(self_id: str, known_peers: Iterable[str], offer_sent: bool) -> Optional[str]:
    """Return the counterpart to send an offer to, or None.

    Only defined for exactly one other peer; with more than one known peer
    no election happens.
    """
    if offer_sent:
        return None
    others = {peer for peer in known_peers if peer != self_id}
    if len(others) != 1:
        return None
    other = next(iter(others))
    if elect_offerer(self_id, other) == self_id:
        return other
    return None
