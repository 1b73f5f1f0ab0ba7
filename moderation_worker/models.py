"""
Domain models for the moderation worker.

Defines the core data structures used throughout the system,
providing type safety and clear interfaces between components.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from .errors import AggregationError


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SAFE = "safe"
    FLAGGED = "flagged"
    ERROR = "error"


class StorageTier(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Category(str, Enum):
    """Fixed set of moderation categories that contribute to the score"""
    EXPLICIT_NUDITY = "Explicit Nudity"
    VIOLENCE = "Violence"
    VISUALLY_DISTURBING = "Visually Disturbing"
    SUGGESTIVE = "Suggestive"
    DRUGS = "Drugs"
    HATE_SYMBOLS = "Hate Symbols"
    GAMBLING = "Gambling"

    @property
    def weight(self) -> float:
        return CATEGORY_WEIGHTS[self]

    @property
    def flag_threshold(self) -> Optional[float]:
        return CATEGORY_FLAG_THRESHOLDS.get(self)

    @classmethod
    def lookup(cls, name: Optional[str]) -> Optional["Category"]:
        """Return the category with this exact name, or None"""
        if not name:
            return None
        try:
            return cls(name)
        except ValueError:
            return None


CATEGORY_WEIGHTS: Dict[Category, float] = {
    Category.EXPLICIT_NUDITY: 1.0,
    Category.VIOLENCE: 0.8,
    Category.VISUALLY_DISTURBING: 0.7,
    Category.SUGGESTIVE: 0.4,
    Category.DRUGS: 0.6,
    Category.HATE_SYMBOLS: 0.9,
    Category.GAMBLING: 0.3,
}

# A category above its threshold flags the job on its own. Gambling never does.
CATEGORY_FLAG_THRESHOLDS: Dict[Category, float] = {
    Category.EXPLICIT_NUDITY: 50,
    Category.VIOLENCE: 60,
    Category.VISUALLY_DISTURBING: 60,
    Category.SUGGESTIVE: 80,
    Category.DRUGS: 70,
    Category.HATE_SYMBOLS: 50,
}

OVERALL_FLAG_THRESHOLD = 50


class CategoryScoreTable:
    """Running maximum confidence per category, seeded at 0"""

    def __init__(self):
        self._scores: Dict[Category, float] = {category: 0.0 for category in Category}

    def raise_to(self, category, confidence: float) -> None:
        """
        Raise a category's score to confidence if it is higher.

        Args:
            category: Category member or its exact name
            confidence: Observed confidence in [0, 100]
        """
        if not isinstance(category, Category):
            resolved = Category.lookup(category)
            if resolved is None:
                raise AggregationError(f"Unknown moderation category: {category!r}")
            category = resolved

        if confidence > self._scores[category]:
            self._scores[category] = confidence

    def get(self, category: Category) -> float:
        return self._scores[category]

    def items(self):
        return self._scores.items()

    def weighted_sum(self) -> float:
        return sum(score * category.weight for category, score in self._scores.items())

    def snapshot(self) -> Dict[str, int]:
        """Rounded copy keyed by category name"""
        return {category.value: round_half_up(score) for category, score in self._scores.items()}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values"""
    return int(math.floor(value + 0.5))


@dataclass
class Job:
    """Represents one moderation run over a single source video"""
    id: str
    source_path: str
    mime_type: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    original_name: Optional[str] = None
    sensitivity_details: Optional[Dict[str, Any]] = None
    storage_tier: StorageTier = StorageTier.LOCAL
    storage_key: Optional[str] = None
    storage_error: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'source_path': self.source_path,
            'mime_type': self.mime_type,
            'status': self.status.value,
            'progress': self.progress,
            'original_name': self.original_name,
            'sensitivity_details': self.sensitivity_details,
            'storage_tier': self.storage_tier.value,
            'storage_key': self.storage_key,
            'storage_error': self.storage_error,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
        }


@dataclass
class FrameSample:
    """A still frame taken from the source video"""
    index: int
    timestamp: float
    path: str

    def read_bytes(self) -> bytes:
        with open(self.path, 'rb') as image_file:
            return image_file.read()


@dataclass(frozen=True)
class ModerationLabel:
    """A moderation label returned by the classifier for one frame"""
    name: str
    confidence: float
    parent: Optional[str] = None


@dataclass(frozen=True)
class SensitivityResult:
    """Final verdict of a moderation run, written once into the job"""
    overall_score: int
    categories: Dict[str, int]
    detected_labels: Tuple[ModerationLabel, ...]
    frames_analyzed: int
    average_label_confidence: int
    is_flagged: bool
    analyzed_at: datetime
    analysis_method: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted sensitivityDetails record"""
        return {
            'overallScore': self.overall_score,
            'categories': dict(self.categories),
            'detectedLabels': [
                {
                    'name': label.name,
                    'parent': label.parent,
                    'confidence': label.confidence
                }
                for label in self.detected_labels
            ],
            'framesAnalyzed': self.frames_analyzed,
            'analysisMethod': self.analysis_method,
            'averageLabelConfidence': self.average_label_confidence,
            'isFlagged': self.is_flagged,
            'analyzedAt': self.analyzed_at.isoformat(),
        }


@dataclass
class ProcessingResult:
    """Represents the outcome of one orchestrator run"""
    success: bool
    status: JobStatus
    stages_completed: List[str]
    result: Optional[SensitivityResult] = None
    error: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
