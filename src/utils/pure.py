from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[str]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Generate a Markdown table.

    Args:
        headers: List of column headers, or None to use first row as headers.
        rows: List of rows, each a list of strings.
        aligns: List of alignments ('l', 'c', 'r') for each column.
                Defaults to all center ('c').

    Returns:
        str: Markdown formatted table.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    headers = [_cell(h) for h in headers]
    rows = [[_cell(c) for c in row] for row in rows]

    num_cols = len(headers)
    if aligns is None:
        aligns = ["c"] * num_cols
    elif len(aligns) != num_cols:
        raise ValueError("Length of aligns must match number of headers.")

    align_map = {
        "l": ":---",
        "c": ":---:",
        "r": "---:",
    }

    header_line = "| " + " | ".join(headers) + " |"
    align_line = "| " + " | ".join(align_map[a] for a in aligns) + " |"
    row_lines = ["| " + " | ".join(row) + " |" for row in rows]

    return "\n".join([header_line, align_line, *row_lines])


def _cell(value) -> str:
    # pipes and newlines would break the row
    if value is None:
        return "-"
    return str(value).replace("|", "\\|").replace("\n", " ")


def format_price(amount) -> str:
    """Rupiah without decimals, dot as thousands separator: Rp 1.500.000"""
    return "Rp " + f"{int(round(amount)):,}".replace(",", ".")


@dataclass(frozen=True)
class RatingSummary:
    count: int
    average: Optional[float]

    def __str__(self) -> str:
        if not self.count:
            return "No reviews"
        noun = "review" if self.count == 1 else "reviews"
        return f"{self.average:.1f} ({self.count} {noun})"


def average_rating(ratings: Iterable[int]) -> Optional[float]:
    """Mean rating, None when there are no ratings."""
    values = list(ratings)
    if not values:
        return None
    return sum(values) / len(values)


def summarize_ratings(ratings: Iterable[int]) -> RatingSummary:
    values = list(ratings)
    return RatingSummary(count=len(values), average=average_rating(values))


def format_rating(ratings: Iterable[int]) -> str:
    """
    >>> format_rating([5, 4])
    '4.5 (2 reviews)'
    >>> format_rating([])
    'No reviews'
    """
    return str(summarize_ratings(ratings))
