"""Classify candidate sources into evidence levels."""

from urllib.parse import urlparse

from ballot_guide_api.schemas.ballot import Ballot, Candidate, EvidenceLevel, Source


def _hostname(url: str) -> str | None:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def _matches(host: str, domain: str) -> bool:
    # Leading dot means suffix match, e.g. ".tx.us"
    if domain.startswith("."):
        return host.endswith(domain)
    return host == domain or host.endswith("." + domain)


def classify_source(
    source: Source, registrar_domains: list[str], reference_domains: list[str]
) -> EvidenceLevel:
    """Evidence level of a single source URL."""
    host = _hostname(source.url)
    if host is None:
        return EvidenceLevel.AI_INFERRED
    if any(_matches(host, d) for d in registrar_domains):
        return EvidenceLevel.VERIFIED
    if any(_matches(host, d) for d in reference_domains):
        return EvidenceLevel.SOURCED
    return EvidenceLevel.AI_INFERRED


def evidence_level(
    candidate: Candidate, registrar_domains: list[str], reference_domains: list[str]
) -> EvidenceLevel:
    """Best evidence level across a candidate's sources.

    A single official registrar source makes the candidate verified; no
    sources at all means the profile is AI-inferred.
    """
    levels = {classify_source(s, registrar_domains, reference_domains) for s in candidate.sources}
    if EvidenceLevel.VERIFIED in levels:
        return EvidenceLevel.VERIFIED
    if EvidenceLevel.SOURCED in levels:
        return EvidenceLevel.SOURCED
    return EvidenceLevel.AI_INFERRED


def annotate_evidence(
    ballot: Ballot, registrar_domains: list[str], reference_domains: list[str]
) -> Ballot:
    """Set ``evidence_level`` on every candidate in place and return the ballot."""
    for race in ballot.races:
        for candidate in race.candidates:
            candidate.evidence_level = evidence_level(
                candidate, registrar_domains, reference_domains
            )
    return ballot
