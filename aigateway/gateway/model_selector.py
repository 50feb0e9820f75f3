"""Model selector for the "Again" feature.

Ranks models for a capability tag and predicts which model a manual retry
should try next. The prediction is a deterministic round-robin over the
ranked list, not an adaptive ranking.
"""

from __future__ import annotations

import logging

from aigateway.core.config import settings
from aigateway.gateway.catalog import ModelCatalog
from aigateway.gateway.types import Caller, ModelInfo

logger = logging.getLogger(__name__)

DEFAULT_TAG = "chat"

# Intent topic -> capability tag
TOPIC_TAGS: dict[str, str] = {
    "general": "chat",
    "mediamaker": "text2pic",
    "analyzefile": "pic2text",
    "tools:sort": "chat",
    "tools:pic": "text2pic",
    "tools:vid": "text2vid",
    "tools:search": "chat",
    "tools:lang": "chat",
    "tools:filesort": "vectorize",
}


class ModelSelector:
    def __init__(self, catalog: ModelCatalog, min_rating: float | None = None):
        self.catalog = catalog
        self.min_rating: float | None = settings.min_model_rating if min_rating is None else min_rating

    def get_eligible_models(self, tag: str, caller: Caller | None = None) -> list[ModelInfo]:
        """Selectable models for `tag`, best first.

        Ordered by quality desc, rating desc, then name asc. Models rated at
        or below the floor (caller override first, then global) are excluded;
        without any floor no model is filtered on rating.
        """
        floor = self.min_rating
        if caller is not None and caller.min_model_rating is not None:
            floor = caller.min_model_rating

        eligible = [
            m for m in self.catalog.by_tag(tag) if m.selectable and (floor is None or m.rating > floor)
        ]
        eligible.sort(key=lambda m: (-m.quality, -m.rating, m.name))
        return eligible

    @staticmethod
    def get_predicted_next(eligible: list[ModelInfo], current_model_id: int | None) -> ModelInfo | None:
        if not eligible:
            return None
        if current_model_id is None:
            return eligible[0]

        for idx, model in enumerate(eligible):
            if model.id == current_model_id:
                return eligible[(idx + 1) % len(eligible)]
        return eligible[0]

    @staticmethod
    def resolve_tag_from_topic(topic: str | None) -> str:
        if not topic:
            return DEFAULT_TAG
        return TOPIC_TAGS.get(topic.strip().lower(), DEFAULT_TAG)

    def again(
        self, topic: str | None, current_model_id: int | None, caller: Caller | None = None
    ) -> tuple[list[ModelInfo], ModelInfo | None]:
        """Eligible models for the topic plus the one a retry should use."""
        tag = self.resolve_tag_from_topic(topic)
        eligible = self.get_eligible_models(tag, caller)
        predicted = self.get_predicted_next(eligible, current_model_id)
        logger.debug(
            "Again for tag %s: %d eligible, current=%s predicted=%s",
            tag,
            len(eligible),
            current_model_id,
            predicted.id if predicted else None,
        )
        return eligible, predicted
