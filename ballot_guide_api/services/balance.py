"""Post-generation balance scoring.

Looks for systematic skew across a finished guide: confidence inflation,
incumbent or challenger bias, and ballot text that favours the candidates
that ended up recommended.
"""

from ballot_guide_api.schemas.ballot import Ballot, Confidence
from ballot_guide_api.schemas.guide import BalanceScore


def _avg(total: float, count: int) -> int:
    return round(total / count) if count else 0


def score_balance(ballot: Ballot, party: str) -> BalanceScore:
    """Score a generated ballot for partisan or editorial skew."""
    recommended = [race for race in ballot.races if race.recommendation is not None]
    race_count = len(recommended)

    distribution = {level: 0 for level in Confidence}
    confidence_total = 0
    reasoning_total = 0
    factor_total = 0
    for race in recommended:
        rec = race.recommendation
        distribution[rec.confidence] += 1
        confidence_total += rec.confidence.score
        reasoning_total += len(rec.reasoning)
        factor_total += len(rec.match_factors)

    incumbent_recs = 0
    challenger_recs = 0
    rec_pros = rec_cons = non_rec_pros = non_rec_cons = 0
    rec_count = non_rec_count = 0
    for race in recommended:
        pick = race.recommendation.candidate_name
        for candidate in race.active_candidates:
            pros = len(" ".join(candidate.pros))
            cons = len(" ".join(candidate.cons))
            if candidate.name == pick:
                if candidate.is_incumbent:
                    incumbent_recs += 1
                else:
                    challenger_recs += 1
                rec_pros += pros
                rec_cons += cons
                rec_count += 1
            else:
                non_rec_pros += pros
                non_rec_cons += cons
                non_rec_count += 1

    high_confidence = distribution[Confidence.STRONG_MATCH] + distribution[Confidence.GOOD_MATCH]
    enthusiasm_pct = _avg(high_confidence * 100, race_count)

    rec_avg_pros = _avg(rec_pros, rec_count)
    non_rec_avg_pros = _avg(non_rec_pros, non_rec_count)

    flags: list[str] = []
    contested = incumbent_recs + challenger_recs
    if contested >= 3:
        incumbent_pct = round(incumbent_recs / contested * 100)
        if incumbent_pct > 80:
            flags.append(
                f"Strong incumbent bias: {incumbent_pct}% of contested "
                "recommendations favor incumbents"
            )
        elif incumbent_pct < 20:
            flags.append(
                f"Strong challenger bias: {100 - incumbent_pct}% of contested "
                "recommendations favor challengers"
            )

    if race_count >= 3 and enthusiasm_pct == 100:
        flags.append(
            "All recommendations rated Strong Match or Good Match; "
            "may indicate insufficient critical analysis"
        )

    if rec_avg_pros > 0 and non_rec_avg_pros > 0:
        ratio = rec_avg_pros / non_rec_avg_pros
        if ratio > 1.5:
            flags.append(
                f"Recommended candidates have {round(ratio * 100 - 100)}% more pro text "
                "than non-recommended; ballot data may favor certain candidates"
            )

    skew_note = None
    if flags:
        skew_note = (
            "Note: This guide's recommendations show some patterns worth noting: "
            + ". ".join(flags)
            + "."
        )

    return BalanceScore(
        party=party,
        total_races=race_count,
        confidence_distribution=distribution,
        avg_confidence=round(confidence_total / race_count, 2) if race_count else 0.0,
        avg_reasoning_length=_avg(reasoning_total, race_count),
        avg_match_factors=round(factor_total / race_count, 2) if race_count else 0.0,
        incumbent_recs=incumbent_recs,
        challenger_recs=challenger_recs,
        enthusiasm_pct=enthusiasm_pct,
        recommended_candidate_avg_pros=rec_avg_pros,
        recommended_candidate_avg_cons=_avg(rec_cons, rec_count),
        non_recommended_candidate_avg_pros=non_rec_avg_pros,
        non_recommended_candidate_avg_cons=_avg(non_rec_cons, non_rec_count),
        flags=flags,
        skew_note=skew_note,
    )
