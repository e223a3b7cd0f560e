"""Parsing of Bible references used by the embed endpoint.

Accepted forms include ``Joh.3:16``, ``Joh 3.16``, ``Joh.3:16-18``,
``Johannes 3:16 - 18`` and ``1. Moos 1:1``. Common Finnish and English
abbreviations are expanded to the Finnish book names stored in the
database; anything else is passed through unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

_REFERENCE_RE = re.compile(r"^(.+?)\s*(\d+)[.:](\d+)(?:\s*-\s*(\d+))?$")


def _numbered(prefixes: List[str], number: int, name: str) -> Dict[str, str]:
    forms = {}
    for prefix in prefixes:
        for sep in (".", ". ", " "):
            forms[f"{number}{sep}{prefix}"] = name
    return forms


ABBREVIATIONS: Dict[str, str] = {
    "Matt": "Matteus",
    "Mark": "Markus",
    "Luuk": "Luukas",
    "Joh": "Johannes",
    "Ps": "Psalmien kirja",
    "Sananl": "Sananlaskujen kirja",
    "Jes": "Jesajan kirja",
    "Room": "Kirje roomalaisille",
    "Gal": "Kirje galatalaisille",
    "Ef": "Kirje efesolaisille",
    "Fil": "Kirje filippiläisille",
    "Hepr": "Kirje heprealaisille",
    "Jaak": "Jaakobin kirje",
    "Ilm": "Johanneksen ilmestys",
    # English
    "John": "Johannes",
    "Matthew": "Matteus",
    "Luke": "Luukas",
    "Gen": "1. Mooseksen kirja",
    "Genesis": "1. Mooseksen kirja",
    "Exod": "2. Mooseksen kirja",
    "Exodus": "2. Mooseksen kirja",
    "Lev": "3. Mooseksen kirja",
    "Leviticus": "3. Mooseksen kirja",
    "Num": "4. Mooseksen kirja",
    "Numbers": "4. Mooseksen kirja",
    "Deut": "5. Mooseksen kirja",
    "Deuteronomy": "5. Mooseksen kirja",
    "Rom": "Kirje roomalaisille",
    "Romans": "Kirje roomalaisille",
    "Galatians": "Kirje galatalaisille",
    "Eph": "Kirje efesolaisille",
    "Ephesians": "Kirje efesolaisille",
    "Phil": "Kirje filippiläisille",
    "Philippians": "Kirje filippiläisille",
    "Rev": "Johanneksen ilmestys",
    "Revelation": "Johanneksen ilmestys",
}
for _n in range(1, 6):
    ABBREVIATIONS.update(_numbered(["Moos"], _n, f"{_n}. Mooseksen kirja"))
for _n in (1, 2):
    ABBREVIATIONS.update(_numbered(["Sam"], _n, f"{_n}. Samuelin kirja"))
    ABBREVIATIONS.update(_numbered(["Kun"], _n, f"{_n}. Kuningasten kirja"))
    ABBREVIATIONS.update(_numbered(["Kor"], _n, f"{_n}. Kor"))
    ABBREVIATIONS.update(_numbered(["Tess"], _n, f"{_n}. Tess"))
    ABBREVIATIONS.update(_numbered(["Tim"], _n, f"{_n}. Tim"))
    ABBREVIATIONS.update(_numbered(["Piet"], _n, f"{_n}. Pietarin kirje"))
for _n in (1, 2, 3):
    ABBREVIATIONS.update(_numbered(["Joh"], _n, f"{_n}. Johanneksen kirje"))
    ABBREVIATIONS[f"{_n} John"] = f"{_n}. Johanneksen kirje"


@dataclass(frozen=True)
class Reference:
    book: str
    chapter: int
    start_verse: int
    end_verse: Optional[int] = None

    @property
    def verse_numbers(self) -> List[int]:
        if self.end_verse is None:
            return [self.start_verse]
        return list(range(self.start_verse, self.end_verse + 1))

    def label(self, book_name: Optional[str] = None) -> str:
        name = book_name or self.book
        if self.end_verse is None:
            return f"{name} {self.chapter}:{self.start_verse}"
        return f"{name} {self.chapter}:{self.start_verse}-{self.end_verse}"


def parse_reference(ref: str) -> Optional[Reference]:
    """Parse ``ref`` or return ``None`` if it is not a verse reference."""
    match = _REFERENCE_RE.match(ref.strip())
    if not match:
        return None
    book = match.group(1).strip()
    # "Joh." and "Joh" are the same abbreviation.
    book = ABBREVIATIONS.get(book) or ABBREVIATIONS.get(book.rstrip(".")) or book
    chapter = int(match.group(2))
    start_verse = int(match.group(3))
    end_verse = int(match.group(4)) if match.group(4) else None
    if end_verse is not None and end_verse < start_verse:
        return None
    return Reference(book=book, chapter=chapter, start_verse=start_verse, end_verse=end_verse)
