"""Synthetic IMDb-style rows using Faker."""

import gzip
import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Type, Union

from faker import Faker

from cdc_engine.decoding.extractors import NULL_MARKER
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)

GENRES = [
    "Action", "Adventure", "Animation", "Biography", "Comedy", "Crime", "Documentary",
    "Drama", "Family", "Fantasy", "History", "Horror", "Music", "Mystery", "Romance",
    "Sci-Fi", "Short", "Sport", "Thriller", "War", "Western",
]
TITLE_TYPES = ["movie", "short", "tvSeries", "tvEpisode", "tvMovie", "video"]
PROFESSIONS = ["actor", "actress", "director", "writer", "producer", "composer", "editor"]
CATEGORIES = ["actor", "actress", "director", "writer", "producer", "self"]
REGIONS = ["US", "GB", "FR", "DE", "JP", "IN", "BR", "ES", "IT"]
LANGUAGES = ["en", "fr", "de", "ja", "hi", "pt", "es", "it"]


class ImdbGenerator(ABC):
    """Base class for IMDb row generators; rows are TSV-ready strings."""

    table: str = ""
    columns: List[str] = []

    def __init__(self, locale: str = "en_US", seed: Optional[int] = None) -> None:
        """
        Initialize data generator.

        Args:
            locale: Faker locale
            seed: Random seed for reproducibility
        """
        self.faker = Faker(locale)
        self.random = random.Random(seed)
        if seed is not None:
            self.faker.seed_instance(seed)

    def tconst(self, index: int) -> str:
        return f"tt{index:07d}"

    def nconst(self, index: Optional[int] = None) -> str:
        if index is None:
            index = self.random.randint(1, 9_999_999)
        return f"nm{index:07d}"

    def maybe(self, value: Any, null_ratio: float = 0.1) -> str:
        """Value as text, or the \\N null marker."""
        if self.random.random() < null_ratio:
            return NULL_MARKER
        return str(value)

    def pick(self, choices: List[str], low: int = 1, high: int = 3) -> str:
        return ",".join(self.random.sample(choices, self.random.randint(low, high)))

    @abstractmethod
    def row(self, index: int) -> Dict[str, str]:
        """Build the row with the given 1-based index."""

    def generate(self, count: int = 1, start: int = 1) -> List[Dict[str, str]]:
        """
        Generate mock rows.

        Args:
            count: Number of rows to generate
            start: Index of the first row

        Returns:
            List of generated rows
        """
        rows = list(self.iter_rows(count, start))
        logger.info(f"Generated {count} {self.table} records")
        return rows

    def iter_rows(self, count: int, start: int = 1) -> Iterator[Dict[str, str]]:
        for index in range(start, start + count):
            yield self.row(index)


class TitleRatingsGenerator(ImdbGenerator):
    table = "title_ratings"
    columns = ["tconst", "averageRating", "numVotes"]

    def row(self, index: int) -> Dict[str, str]:
        return {
            "tconst": self.tconst(index),
            "averageRating": f"{self.random.randint(10, 100) / 10:.1f}",
            "numVotes": str(self.random.randint(5, 2_500_000)),
        }


class TitleBasicsGenerator(ImdbGenerator):
    table = "title_basics"
    columns = [
        "tconst", "titleType", "primaryTitle", "originalTitle", "isAdult",
        "startYear", "endYear", "runtimeMinutes", "genres",
    ]

    def row(self, index: int) -> Dict[str, str]:
        title = self.faker.catch_phrase()
        title_type = self.random.choice(TITLE_TYPES)
        start_year = self.random.randint(1920, 2025)
        end_year = start_year + self.random.randint(1, 10) if title_type == "tvSeries" else None
        return {
            "tconst": self.tconst(index),
            "titleType": title_type,
            "primaryTitle": title,
            "originalTitle": title if self.random.random() < 0.8 else self.faker.catch_phrase(),
            "isAdult": "0",
            "startYear": self.maybe(start_year, 0.05),
            "endYear": NULL_MARKER if end_year is None else str(end_year),
            "runtimeMinutes": self.maybe(self.random.randint(5, 240), 0.2),
            "genres": self.maybe(self.pick(GENRES), 0.05),
        }


class NameBasicsGenerator(ImdbGenerator):
    table = "name_basics"
    columns = [
        "nconst", "primaryName", "birthYear", "deathYear", "primaryProfession", "knownForTitles",
    ]

    def row(self, index: int) -> Dict[str, str]:
        birth = self.random.randint(1900, 2005)
        death = birth + self.random.randint(30, 95) if self.random.random() < 0.2 else None
        known_for = ",".join(self.tconst(self.random.randint(1, 999_999)) for _ in range(self.random.randint(1, 4)))
        return {
            "nconst": self.nconst(index),
            "primaryName": self.faker.name(),
            "birthYear": self.maybe(birth, 0.3),
            "deathYear": NULL_MARKER if death is None or death > 2025 else str(death),
            "primaryProfession": self.pick(PROFESSIONS),
            "knownForTitles": known_for,
        }


class TitleCrewGenerator(ImdbGenerator):
    table = "title_crew"
    columns = ["tconst", "directors", "writers"]

    def row(self, index: int) -> Dict[str, str]:
        return {
            "tconst": self.tconst(index),
            "directors": ",".join(self.nconst() for _ in range(self.random.randint(1, 2))),
            "writers": self.maybe(",".join(self.nconst() for _ in range(self.random.randint(1, 3))), 0.3),
        }


class TitleEpisodeGenerator(ImdbGenerator):
    table = "title_episode"
    columns = ["tconst", "parentTconst", "seasonNumber", "episodeNumber"]

    def row(self, index: int) -> Dict[str, str]:
        return {
            "tconst": self.tconst(index),
            "parentTconst": self.tconst(self.random.randint(1, 999_999)),
            "seasonNumber": self.maybe(self.random.randint(1, 20), 0.2),
            "episodeNumber": self.maybe(self.random.randint(1, 24), 0.2),
        }


class TitleAkasGenerator(ImdbGenerator):
    """Several localized titles per title: ordering 1..3 under one titleId."""

    table = "title_akas"
    columns = [
        "titleId", "ordering", "title", "region", "language", "types", "attributes",
        "isOriginalTitle",
    ]

    def row(self, index: int) -> Dict[str, str]:
        ordering = (index - 1) % 3 + 1
        return {
            "titleId": self.tconst((index - 1) // 3 + 1),
            "ordering": str(ordering),
            "title": self.faker.catch_phrase(),
            "region": self.random.choice(REGIONS),
            "language": self.maybe(self.random.choice(LANGUAGES), 0.5),
            "types": self.maybe(self.random.choice(["imdbDisplay", "original", "alternative"]), 0.4),
            "attributes": NULL_MARKER,
            "isOriginalTitle": "1" if ordering == 1 else "0",
        }


class TitlePrincipalsGenerator(ImdbGenerator):
    """Several principals per title: ordering 1..5 under one tconst."""

    table = "title_principals"
    columns = ["tconst", "ordering", "nconst", "category", "job", "characters"]

    def row(self, index: int) -> Dict[str, str]:
        category = self.random.choice(CATEGORIES)
        acting = category in ("actor", "actress", "self")
        return {
            "tconst": self.tconst((index - 1) // 5 + 1),
            "ordering": str((index - 1) % 5 + 1),
            "nconst": self.nconst(),
            "category": category,
            "job": NULL_MARKER if acting else self.maybe(self.faker.job(), 0.5),
            "characters": f'["{self.faker.first_name()}"]' if acting else NULL_MARKER,
        }


GENERATORS: Dict[str, Type[ImdbGenerator]] = {
    cls.table: cls
    for cls in (
        TitleRatingsGenerator,
        TitleBasicsGenerator,
        NameBasicsGenerator,
        TitleCrewGenerator,
        TitleEpisodeGenerator,
        TitleAkasGenerator,
        TitlePrincipalsGenerator,
    )
}


def generator_for(table: str, seed: Optional[int] = None) -> ImdbGenerator:
    """Generator instance for an IMDb table."""
    try:
        return GENERATORS[table](seed=seed)
    except KeyError:
        raise ValueError(f"No generator for table '{table}' (known: {', '.join(GENERATORS)})") from None


def write_tsv(
    path: Union[str, Path], generator: ImdbGenerator, count: int
) -> int:
    """
    Write generated rows as an IMDb-style TSV (gzip if the name ends in .gz).

    Returns:
        Number of data rows written
    """
    path = Path(path)
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "wt", encoding="utf-8", newline="") as handle:
        handle.write("\t".join(generator.columns) + "\n")
        for row in generator.iter_rows(count):
            handle.write("\t".join(row[column] for column in generator.columns) + "\n")

    logger.info(f"Wrote {count} {generator.table} rows to {path}")
    return count
