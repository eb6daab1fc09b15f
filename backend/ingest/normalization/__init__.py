from ingest.normalization.cricket import parse_score_string
from ingest.normalization.common import team_short_name
from ingest.normalization.display import format_match_for_display, formatted_score
from ingest.normalization.normalizer import normalize_match, normalize_matches

__all__ = [
    "format_match_for_display",
    "formatted_score",
    "normalize_match",
    "normalize_matches",
    "parse_score_string",
    "team_short_name",
]
