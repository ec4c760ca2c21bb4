"""Voter session state and its on-disk persistence.

``SessionState`` is one explicit, serializable value owned by the caller and
passed to the stream consumer and the override ledger. ``SessionStore``
writes it as one JSON file per key under a stable namespace prefix.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import Field, TypeAdapter, ValidationError

from ballot_guide_api.assembly import GenerationStatus
from ballot_guide_api.schemas.ballot import Ballot
from ballot_guide_api.schemas.common import ApiModel, Party
from ballot_guide_api.schemas.guide import VoterProfile

logger = logging.getLogger(__name__)

NAMESPACE = "tx_votes_"
STALE_AFTER = timedelta(hours=24)


class Override(ApiModel):
    """A voter's replacement for a generated pick."""

    original_candidate: str | None = Field(default=None, description="Generated pick when set")
    chosen_candidate: str = Field(description="Candidate the voter chose")
    reason: str | None = None
    reason_submitted: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


OverrideMap = dict[Party, dict[str, Override]]


class SessionState(ApiModel):
    """Everything the client keeps between visits."""

    profile: VoterProfile | None = None
    selected_party: Party | None = None
    ballots: dict[Party, Ballot] = Field(default_factory=dict)
    profile_summaries: dict[Party, str] = Field(default_factory=dict)
    county_ballot_available: dict[Party, bool | None] = Field(default_factory=dict)
    fingerprints: dict[Party, str] = Field(default_factory=dict)
    overrides: OverrideMap = Field(default_factory=dict)
    generation: dict[Party, GenerationStatus] = Field(default_factory=dict)
    generation_errors: dict[Party, str] = Field(default_factory=dict)
    last_refreshed: datetime | None = None

    def is_stale(self, now: datetime | None = None) -> bool:
        """True when ballot data is missing or older than ``STALE_AFTER``."""
        if self.last_refreshed is None:
            return True
        now = now or datetime.now(timezone.utc)
        refreshed = self.last_refreshed
        if refreshed.tzinfo is None:
            refreshed = refreshed.replace(tzinfo=timezone.utc)
        return now - refreshed > STALE_AFTER

    def touch(self, now: datetime | None = None) -> None:
        self.last_refreshed = now or datetime.now(timezone.utc)


class _ProfileEntry(ApiModel):
    profile: VoterProfile | None = None
    selected_party: Party | None = None
    profile_summaries: dict[Party, str] = Field(default_factory=dict)
    county_ballot_available: dict[Party, bool | None] = Field(default_factory=dict)
    fingerprints: dict[Party, str] = Field(default_factory=dict)
    last_refreshed: datetime | None = None


_overrides_adapter = TypeAdapter(OverrideMap)


class SessionStore:
    """Saves and loads ``SessionState`` under ``<directory>/<namespace><key>.json``.

    Keys are ``profile``, ``ballot_<party>`` and ``overrides``. An empty
    override map removes its file instead of writing ``{}``. A corrupt entry
    is logged and skipped on load; the rest of the session still loads.
    """

    def __init__(self, directory: str | Path, namespace: str = NAMESPACE):
        self.directory = Path(directory)
        self.namespace = namespace

    def path(self, key: str) -> Path:
        return self.directory / f"{self.namespace}{key}.json"

    def keys(self) -> list[str]:
        """Keys currently stored under this namespace."""
        if not self.directory.is_dir():
            return []
        prefix = self.namespace
        return sorted(
            p.stem[len(prefix):] for p in self.directory.glob(f"{prefix}*.json") if p.is_file()
        )

    def save(self, state: SessionState) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

        entry = _ProfileEntry(
            profile=state.profile,
            selected_party=state.selected_party,
            profile_summaries=state.profile_summaries,
            county_ballot_available=state.county_ballot_available,
            fingerprints=state.fingerprints,
            last_refreshed=state.last_refreshed,
        )
        self._write("profile", entry.to_wire())

        for party in Party:
            ballot = state.ballots.get(party)
            if ballot is None:
                self._remove(f"ballot_{party.value}")
            else:
                self._write(f"ballot_{party.value}", ballot.to_wire())

        overrides = {party: entries for party, entries in state.overrides.items() if entries}
        if overrides:
            self._write("overrides", _overrides_adapter.dump_python(overrides, mode="json", by_alias=True))
        else:
            self._remove("overrides")

    def load(self) -> SessionState:
        state = SessionState()

        raw = self._read("profile")
        if raw is not None:
            try:
                entry = _ProfileEntry.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Ignoring corrupt session profile: %s", exc.error_count())
            else:
                state.profile = entry.profile
                state.selected_party = entry.selected_party
                state.profile_summaries = entry.profile_summaries
                state.county_ballot_available = entry.county_ballot_available
                state.fingerprints = entry.fingerprints
                state.last_refreshed = entry.last_refreshed

        for party in Party:
            raw = self._read(f"ballot_{party.value}")
            if raw is None:
                continue
            try:
                state.ballots[party] = Ballot.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Ignoring corrupt %s ballot: %s", party.value, exc.error_count())
                state.fingerprints.pop(party, None)

        raw = self._read("overrides")
        if raw is not None:
            try:
                overrides = _overrides_adapter.validate_python(raw)
            except ValidationError as exc:
                logger.warning("Ignoring corrupt overrides: %s", exc.error_count())
            else:
                state.overrides = {party: entries for party, entries in overrides.items() if entries}

        return state

    def clear(self) -> None:
        """Remove every key under this namespace."""
        for key in self.keys():
            self._remove(key)

    def _read(self, key: str) -> Any:
        path = self.path(key)
        try:
            with path.open(encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session entry %s: %s", path.name, exc)
            return None

    def _write(self, key: str, data: Any) -> None:
        path = self.path(key)
        tmp = path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False)
        os.replace(tmp, path)

    def _remove(self, key: str) -> None:
        self.path(key).unlink(missing_ok=True)
