"""
Episode sequencing for a story's embedded episode array.

The list order is the playback order and ``number`` is always ``index + 1``.
Every operation returns a new list and leaves its input untouched, so a caller
that keeps the list it passed in still holds the pre-operation state when the
write fails.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

from .exceptions import EpisodeIndexError, EpisodeNotFoundError, PersistenceError
from .schemas import Episode

logger = logging.getLogger(__name__)

# поля, которые клиент не может менять через update_at
_PROTECTED_FIELDS = {"id", "number"}
_ALIASES = {"audioUrl": "audio_url"}


class EpisodeWriter(ABC):
    @abstractmethod
    def write_episodes(self, story_id: str, episodes: List[Episode]) -> None:
        """Replace the whole persisted episode array of the story."""


def renumber(episodes: List[Episode]) -> List[Episode]:
    return [ep.model_copy(update={"number": i + 1}) for i, ep in enumerate(episodes)]


def is_sequential(episodes: List[Episode]) -> bool:
    return all(ep.number == i + 1 for i, ep in enumerate(episodes))


def index_of(episodes: List[Episode], episode_id: str) -> int:
    for i, ep in enumerate(episodes):
        if ep.id == episode_id:
            return i
    raise EpisodeNotFoundError(episode_id)


def _check_index(episodes: List[Episode], index: int) -> None:
    if not 0 <= index < len(episodes):
        raise EpisodeIndexError(f"Episode index {index} out of range (0..{len(episodes) - 1})")


def _normalize(data: Mapping[str, Any]) -> dict:
    return {_ALIASES.get(k, k): v for k, v in data.items()}


class EpisodeSequencer:
    def __init__(self, writer: EpisodeWriter):
        self.writer = writer

    def _commit(self, story_id: str, episodes: List[Episode]) -> List[Episode]:
        clean = renumber(episodes)
        try:
            self.writer.write_episodes(story_id, clean)
        except Exception as e:
            logger.error("Saving episodes of story %s failed: %s", story_id, e)
            raise PersistenceError(str(e)) from e
        logger.info("Saved %d episodes for story %s", len(clean), story_id)
        return clean

    def append(self, story_id: str, episodes: List[Episode], data: Mapping[str, Any]) -> List[Episode]:
        fields = {k: v for k, v in _normalize(data).items() if k not in _PROTECTED_FIELDS}
        new_episode = Episode(number=len(episodes) + 1, **fields)
        return self._commit(story_id, [*episodes, new_episode])

    def move_by_swap(self, story_id: str, episodes: List[Episode], index: int, direction: int) -> List[Episode]:
        if direction not in (-1, 1):
            raise ValueError("direction must be -1 or 1")
        _check_index(episodes, index)
        target = index + direction
        if target < 0 or target >= len(episodes):
            # край списка: ничего не делаем и ничего не пишем
            return episodes

        reordered = list(episodes)
        reordered[index], reordered[target] = reordered[target], reordered[index]
        return self._commit(story_id, reordered)

    def move_by_reposition(
        self,
        story_id: str,
        episodes: List[Episode],
        from_index: Optional[int],
        to_index: Optional[int],
    ) -> List[Episode]:
        if from_index is None or to_index is None or from_index == to_index:
            return episodes
        _check_index(episodes, from_index)
        _check_index(episodes, to_index)

        reordered = list(episodes)
        dragged = reordered.pop(from_index)
        reordered.insert(to_index, dragged)
        return self._commit(story_id, reordered)

    def remove_at(self, story_id: str, episodes: List[Episode], index: int) -> List[Episode]:
        _check_index(episodes, index)
        remaining = episodes[:index] + episodes[index + 1:]
        return self._commit(story_id, remaining)

    def update_at(self, story_id: str, episodes: List[Episode], index: int, partial: Mapping[str, Any]) -> List[Episode]:
        _check_index(episodes, index)
        changes = {
            k: v
            for k, v in _normalize(partial).items()
            if k not in _PROTECTED_FIELDS and k in Episode.model_fields
        }
        updated = list(episodes)
        updated[index] = episodes[index].model_copy(update=changes)
        return self._commit(story_id, updated)
