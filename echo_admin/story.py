# echo_admin/story.py
import enum
import logging
import random
from typing import List, Optional, Dict, Any, Tuple

from sqlalchemy.orm import Session
from sqlalchemy import func, or_

from . import models
from .episodes import EpisodeWriter, is_sequential, renumber
from .exceptions import StoryNotFoundError
from .schemas import AppConfigSchema, Episode

logger = logging.getLogger(__name__)

DEFAULT_COVER_URL = "https://picsum.photos/seed/{seed}/500/500"
APP_CONFIG_ID = "app_config"
REQUIRED_FIELDS = ("title", "author", "color")
CLEARABLE_FIELDS = ("genre", "description", "cover_url")


# ---------- Истории ----------

def create_story(
    db: Session,
    title: str,
    author: str,
    genre: Optional[str] = None,
    description: Optional[str] = None,
    cover_url: Optional[str] = None,
    color: str = "#6366f1",
) -> models.Story:
    """Создать историю с пустым списком эпизодов."""
    if not cover_url:
        # без обложки подставляем случайную картинку-заглушку
        cover_url = DEFAULT_COVER_URL.format(seed=random.randint(0, 999))

    story = models.Story(
        title=title,
        author=author,
        genre=genre,
        description=description,
        cover_url=cover_url,
        color=color,
        episodes=[],
    )
    db.add(story)
    db.commit()
    db.refresh(story)
    logger.info("Created story %s (%s)", story.id, title)
    return story


def get_story(db: Session, story_id: str) -> models.Story:
    story = db.get(models.Story, story_id)
    if story is None:
        raise StoryNotFoundError(story_id)
    return story


def _matches(term: str):
    pattern = f"%{term.lower()}%"
    return or_(
        func.lower(models.Story.title).like(pattern),
        func.lower(models.Story.author).like(pattern),
    )


def list_stories(db: Session, search: Optional[str] = None) -> List[models.Story]:
    """Все истории, новые сверху; search фильтрует по названию или автору."""
    query = db.query(models.Story)
    if search:
        query = query.filter(_matches(search))
    return query.order_by(models.Story.created_at.desc()).all()


def update_story(db: Session, story_id: str, changes: Dict[str, Any]) -> models.Story:
    story = get_story(db, story_id)
    for field in REQUIRED_FIELDS:
        if changes.get(field) is not None:
            setattr(story, field, changes[field])
    # необязательные поля можно сбросить явным null
    for field in CLEARABLE_FIELDS:
        if field in changes:
            setattr(story, field, changes[field] or None)
    db.commit()
    db.refresh(story)
    return story


def delete_story(db: Session, story_id: str) -> None:
    # эпизоды лежат внутри документа и удаляются вместе с ним
    story = get_story(db, story_id)
    db.delete(story)
    db.commit()
    logger.info("Deleted story %s", story_id)


# ---------- Эпизоды ----------

def load_episodes(db: Session, story: models.Story) -> List[Episode]:
    """
    Read the embedded episode array.

    Records written before episodes had stable ids get one here, numbers that
    drifted from the list position are recomputed, and the array is saved back
    right away, so later requests can address episodes by id.
    """
    raw = list(story.episodes or [])
    loaded = [Episode.model_validate(item) for item in raw]
    episodes = renumber(loaded)
    if any("id" not in item for item in raw) or not is_sequential(loaded):
        story.episodes = [ep.model_dump(by_alias=True) for ep in episodes]
        db.commit()
        logger.info("Normalized stored episodes for story %s", story.id)
    return episodes


class SqlEpisodeWriter(EpisodeWriter):
    """Writes the whole episode array in one UPDATE of the story row."""

    def __init__(self, db: Session):
        self.db = db

    def write_episodes(self, story_id: str, episodes: List[Episode]) -> None:
        story = get_story(self.db, story_id)
        story.episodes = [ep.model_dump(by_alias=True) for ep in episodes]
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


# ---------- Featured / Trending ----------

class StoryFlag(str, enum.Enum):
    featured = "featured"
    trending = "trending"

    @property
    def column(self):
        return {
            StoryFlag.featured: models.Story.is_featured,
            StoryFlag.trending: models.Story.is_trending,
        }[self]

    @property
    def attr(self) -> str:
        return self.column.key


def list_section(db: Session, flag: StoryFlag, search: str = "") -> Tuple[List[models.Story], List[models.Story]]:
    """Вернуть (активные, кандидаты) для секции."""
    active = (
        db.query(models.Story)
        .filter(flag.column.is_(True))
        .order_by(models.Story.created_at.desc())
        .all()
    )
    candidates = db.query(models.Story).filter(flag.column.is_(False))
    if search:
        candidates = candidates.filter(_matches(search))
    return active, candidates.order_by(models.Story.created_at.desc()).all()


def set_flag(db: Session, story_id: str, flag: StoryFlag, value: bool) -> models.Story:
    story = get_story(db, story_id)
    setattr(story, flag.attr, value)
    db.commit()
    db.refresh(story)
    return story


# ---------- Жанры ----------

def list_genres(db: Session) -> List[models.Genre]:
    return db.query(models.Genre).order_by(models.Genre.name.asc()).all()


def find_genre_by_name(db: Session, name: str) -> Optional[models.Genre]:
    return (
        db.query(models.Genre)
        .filter(func.lower(models.Genre.name) == name.lower())
        .first()
    )


# ---------- Пользователи приложения ----------

def list_app_users(db: Session, search: Optional[str] = None, limit: int = 50) -> Tuple[int, List[models.AppUser]]:
    """
    Страница пользователей + общее количество.

    total считается на сервере по всей таблице, сама страница ограничена limit.
    """
    total = db.query(func.count(models.AppUser.id)).scalar() or 0
    page = (
        db.query(models.AppUser)
        .order_by(models.AppUser.created_at.desc())
        .limit(limit)
        .all()
    )
    if search:
        term = search.lower()
        page = [
            u for u in page
            if term in (u.phone or "").lower() or term in (u.name or "").lower()
        ]
    return total, page


# ---------- Дашборд ----------

def dashboard_stats(db: Session, recent: int = 3) -> Dict[str, Any]:
    stories = list_stories(db)
    return {
        "stories": len(stories),
        "episodes": sum(len(s.episodes or []) for s in stories),
        "recent": stories[:recent],
    }


# ---------- Настройки приложения ----------

def get_app_config(db: Session) -> AppConfigSchema:
    row = db.get(models.AppConfig, APP_CONFIG_ID)
    if row is None:
        # первый запуск: сохраняем значения по умолчанию
        defaults = AppConfigSchema()
        db.add(models.AppConfig(id=APP_CONFIG_ID, config=defaults.model_dump()))
        db.commit()
        return defaults
    return AppConfigSchema.model_validate(row.config)


def save_app_config(db: Session, config: AppConfigSchema) -> AppConfigSchema:
    row = db.get(models.AppConfig, APP_CONFIG_ID)
    if row is None:
        row = models.AppConfig(id=APP_CONFIG_ID, config=config.model_dump())
        db.add(row)
    else:
        row.config = config.model_dump()
    db.commit()
    logger.info("App config updated (maintenance_mode=%s)", config.maintenance_mode)
    return config
