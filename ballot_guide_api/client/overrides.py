"""Override Ledger: voter picks layered over generated recommendations.

Overrides live in ``SessionState.overrides[party][race_key]``. The generated
recommendation on the ballot is never touched.
"""

import logging
from collections.abc import Callable
from typing import Any

from ballot_guide_api.client.session import Override, SessionState
from ballot_guide_api.client.side_channel import BestEffortChannel
from ballot_guide_api.schemas.ballot import Race
from ballot_guide_api.schemas.common import Party
from ballot_guide_api.schemas.feedback import OverrideFeedbackRequest

logger = logging.getLogger(__name__)

FeedbackSender = Callable[[OverrideFeedbackRequest], None]
EventSender = Callable[[str, dict[str, Any]], None]


class InvalidOverrideError(ValueError):
    """The race or candidate cannot be overridden. Nothing was changed."""


class OverrideLedger:
    def __init__(
        self,
        session: SessionState,
        send_feedback: FeedbackSender | None = None,
        channel: BestEffortChannel | None = None,
        send_event: EventSender | None = None,
    ):
        self.session = session
        self._send_feedback = send_feedback
        self._channel = channel
        self._send_event = send_event

    def find_race(self, party: Party, race_key: str) -> Race:
        """The race with this key on the party's current ballot.

        Raises:
            InvalidOverrideError: no ballot for the party or no such race
        """
        ballot = self.session.ballots.get(party)
        if ballot is None:
            raise InvalidOverrideError(f"No {party.value} ballot loaded")
        for race in ballot.races:
            if race.key == race_key:
                return race
        raise InvalidOverrideError(f"Unknown race {race_key!r}")

    def set_override(self, party: Party, race_key: str, candidate_name: str) -> Override:
        """Replace the generated pick with ``candidate_name``.

        The race does not need a recommendation. The current generated pick,
        if any, is kept as ``original_candidate``.

        Raises:
            InvalidOverrideError: the candidate is withdrawn or not in the race
        """
        race = self.find_race(party, race_key)
        if race.find_active(candidate_name) is None:
            raise InvalidOverrideError(
                f"{candidate_name!r} is not an active candidate in {race_key!r}"
            )
        original = race.recommendation.candidate_name if race.recommendation else None
        override = Override(original_candidate=original, chosen_candidate=candidate_name)
        self.session.overrides.setdefault(party, {})[race_key] = override
        self._track("override_set", party)
        return override

    def clear_override(self, party: Party, race_key: str) -> bool:
        """Undo an override. Returns whether one existed."""
        entries = self.session.overrides.get(party)
        if not entries or race_key not in entries:
            return False
        del entries[race_key]
        if not entries:
            del self.session.overrides[party]
        self._track("override_undo", party)
        return True

    def get_override(self, party: Party, race_key: str) -> Override | None:
        return self.session.overrides.get(party, {}).get(race_key)

    def get_effective_choice(self, party: Party, race_key: str) -> str | None:
        """Override pick, else generated pick, else None."""
        override = self.get_override(party, race_key)
        if override is not None:
            return override.chosen_candidate
        ballot = self.session.ballots.get(party)
        if ballot is None:
            return None
        for race in ballot.races:
            if race.key == race_key:
                return race.recommendation.candidate_name if race.recommendation else None
        return None

    def submit_feedback(
        self, party: Party, race_key: str, reason: str | None, lang: str = "en"
    ) -> bool:
        """Mark the override's reason as submitted and forward it best-effort.

        The local update happens first and does not depend on forwarding.

        Raises:
            InvalidOverrideError: no override exists for the race
        """
        override = self.get_override(party, race_key)
        if override is None:
            raise InvalidOverrideError(f"No override for {race_key!r}")
        override.reason = (reason or "").strip() or None
        override.reason_submitted = True

        if self._send_feedback is None or self._channel is None:
            return False
        feedback = OverrideFeedbackRequest(
            party=party,
            race=race_key,
            from_candidate=override.original_candidate,
            to_candidate=override.chosen_candidate,
            reason=override.reason,
            lang=lang,
        )
        return self._channel.submit("override feedback", self._send_feedback, feedback)

    def _track(self, event: str, party: Party) -> bool:
        # Fire-and-forget; no race or candidate names leave the device
        if self._send_event is None or self._channel is None:
            return False
        return self._channel.submit("analytics", self._send_event, event, {"party": party.value})
