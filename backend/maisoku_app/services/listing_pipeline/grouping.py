"""
Listing Deduplication / Grouping
================================

Clusters candidates from every document in a batch into listing groups.

Grouping rule:
- Candidates are partitioned by the key a ListingMatcher assigns them
- The default matcher uses the candidate's dedup key (exact string equality)
- Every candidate lands in exactly one group

Primary selection:
- The member with the longest preview text is the primary
- Ties go to the first-seen member, so identical input in identical order
  always yields identical output

Group confidence is a static prior: 0.9 when two or more sightings
corroborate each other, 0.7 for a single sighting.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .candidates import ListingCandidate, rent_band

logger = logging.getLogger(__name__)

CORROBORATED_GROUP_CONFIDENCE = 0.9
SINGLE_GROUP_CONFIDENCE = 0.7


def group_confidence_for(member_count: int) -> float:
    return CORROBORATED_GROUP_CONFIDENCE if member_count >= 2 else SINGLE_GROUP_CONFIDENCE


class ListingMatcher:
    """
    Assigns each candidate the key that decides which group it joins.

    Subclass to swap in stricter or looser matching without touching the
    grouping algorithm. Keys must be plain strings so that grouping stays an
    equivalence partition.
    """

    name = "base"

    def key_for(self, candidate: ListingCandidate) -> str:
        raise NotImplementedError


class DedupKeyMatcher(ListingMatcher):
    """Exact equality on the candidate's derived dedup key."""

    name = "dedup_key"

    def key_for(self, candidate: ListingCandidate) -> str:
        return candidate.dedup_key


class RentBandMatcher(ListingMatcher):
    """
    Name + address equality with a configurable rent tolerance band.

    A wider band merges sightings whose printed rent differs slightly
    (e.g. with / without management fee).
    """

    name = "rent_band"

    def __init__(self, band_yen: int = 20000):
        if band_yen <= 0:
            raise ValueError("band_yen must be positive")
        self.band_yen = band_yen

    def key_for(self, candidate: ListingCandidate) -> str:
        # Key parts never contain "_" after normalization
        name, address, _ = candidate.dedup_key.split('_', 2)
        return f"{name}_{address}_{rent_band(candidate.raw_rent, self.band_yen)}"


@dataclass
class ListingGroup:
    """
    A cluster of candidates believed to denote the same listing.

    Members are kept in first-seen order; `primary_candidate` and
    `duplicate_candidates` are derived from them.
    """
    id: str
    key: str
    members: List[ListingCandidate] = field(default_factory=list)
    group_confidence: float = SINGLE_GROUP_CONFIDENCE

    @property
    def primary_candidate(self) -> ListingCandidate:
        primary = self.members[0]
        for candidate in self.members[1:]:
            if len(candidate.preview_text) > len(primary.preview_text):
                primary = candidate
        return primary

    @property
    def duplicate_candidates(self) -> List[ListingCandidate]:
        primary = self.primary_candidate
        return [c for c in self.members if c is not primary]

    @property
    def page_indexes(self) -> List[int]:
        return [c.page_index for c in self.members]

    @property
    def file_ids(self) -> List[str]:
        return [c.file_id for c in self.members]

    @property
    def size(self) -> int:
        return len(self.members)

    def add(self, candidate: ListingCandidate):
        """Add a sighting and recompute the group confidence."""
        self.members.append(candidate)
        self.group_confidence = group_confidence_for(len(self.members))

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'key': self.key,
            'primary_candidate': self.primary_candidate.to_dict(),
            'duplicate_candidates': [c.to_dict() for c in self.duplicate_candidates],
            'page_indexes': self.page_indexes,
            'file_ids': self.file_ids,
            'group_confidence': self.group_confidence
        }


class ListingGrouper:
    """
    Accumulates candidates into groups.

    Candidates may be added in several calls before extraction runs;
    group confidence is recomputed as members arrive.

    Example usage:

        grouper = ListingGrouper()
        grouper.add_candidates(file_a_candidates)
        grouper.add_candidates(file_b_candidates)
        groups = grouper.groups
    """

    def __init__(self, matcher: ListingMatcher = None):
        self.matcher = matcher or DedupKeyMatcher()
        self._groups: Dict[str, ListingGroup] = {}
        self._group_counter = 0

    def _generate_group_id(self) -> str:
        self._group_counter += 1
        return f"group_{self._group_counter:04d}"

    def add_candidate(self, candidate: ListingCandidate) -> ListingGroup:
        key = self.matcher.key_for(candidate)
        group = self._groups.get(key)
        if group is None:
            group = ListingGroup(id=self._generate_group_id(), key=key)
            self._groups[key] = group
        group.add(candidate)
        return group

    def add_candidates(self, candidates: Iterable[ListingCandidate]):
        for candidate in candidates:
            self.add_candidate(candidate)

    @property
    def groups(self) -> List[ListingGroup]:
        """Groups in order of first appearance of their key."""
        return list(self._groups.values())

    @property
    def candidate_count(self) -> int:
        return sum(g.size for g in self._groups.values())


def group_candidates(
    candidates: Iterable[ListingCandidate],
    matcher: ListingMatcher = None
) -> List[ListingGroup]:
    """
    Partition candidates into listing groups.

    Args:
        candidates: All candidates in the batch, in stable input order
        matcher: Optional matcher (defaults to exact dedup-key equality)

    Returns:
        One group per distinct key, in first-seen order
    """
    grouper = ListingGrouper(matcher)
    grouper.add_candidates(candidates)
    groups = grouper.groups

    logger.info(
        f"Grouped {grouper.candidate_count} candidate(s) into {len(groups)} listing group(s) "
        f"using {grouper.matcher.name} matcher"
    )
    return groups
