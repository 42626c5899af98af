import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable, List, Optional

from fastapi import FastAPI, Depends, HTTPException, status, UploadFile, File, Query, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .config import settings, MAX_FILE_SIZE
from .db import Base, engine, get_db, SessionLocal
from . import models, story, marketing, menu
from .auth import (
    LoginRequest,
    AuthResponse,
    SessionContext,
    authenticate,
    create_jwt,
    ensure_bootstrap_admin,
    get_current_session,
    require_section,
)
from .episodes import EpisodeSequencer, index_of
from .exceptions import (
    EpisodeIndexError,
    EpisodeNotFoundError,
    PersistenceError,
    StorageError,
    StoryNotFoundError,
)
from .logging_config import setup_logging
from .schemas import (
    AppConfigSchema,
    AppUserOut,
    DashboardOut,
    EpisodeCreate,
    EpisodeList,
    EpisodeMove,
    EpisodeReposition,
    EpisodeUpdate,
    GenreIn,
    GenreOut,
    HealthResponse,
    NotificationCreate,
    NotificationOut,
    SectionOut,
    SessionOut,
    StoryCreate,
    StoryOut,
    StoryUpdate,
    UsersPage,
)
from .sessions import end_session, start_session
from .storage import MediaStorage, get_media_storage

logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    db = SessionLocal()
    try:
        ensure_bootstrap_admin(db)
    finally:
        db.close()
    logger.info("Echo Admin API started")
    yield


app = FastAPI(title="Echo Admin API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# разделы меню, к которым привязаны права на эндпоинты
can_read = require_section("/")
can_manage = require_section("/manage")
can_view_users = require_section("/users")
can_market = require_section("/marketing")
can_configure = require_section("/settings")


def get_sequencer(db: Session = Depends(get_db)) -> EpisodeSequencer:
    return EpisodeSequencer(story.SqlEpisodeWriter(db))


def get_push_client() -> marketing.PushClient:
    return marketing.PushClient()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_storage() -> MediaStorage:
    try:
        return get_media_storage()
    except RuntimeError as e:
        logger.error("Media storage unavailable: %s", e)
        raise HTTPException(status_code=503, detail=f"Media storage is not configured: {e}")


def _get_story_or_404(db: Session, story_id: str) -> models.Story:
    try:
        return story.get_story(db, story_id)
    except StoryNotFoundError:
        raise HTTPException(status_code=404, detail="Story not found")


def _require_confirmation(confirm: bool) -> None:
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Confirmation required: repeat the request with confirm=true.",
        )


def _apply(story_id: str, operation: Callable[[], list]) -> EpisodeList:
    """Run a sequencer operation and map its errors onto HTTP responses."""
    try:
        episodes = operation()
    except EpisodeNotFoundError:
        raise HTTPException(status_code=404, detail="Episode not found")
    except EpisodeIndexError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=f"Save failed: {e}")
    return EpisodeList(story_id=story_id, episodes=episodes)


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


# ---------- Авторизация ----------

@app.post("/auth/login", response_model=AuthResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)) -> AuthResponse:
    staff = authenticate(db, req.email, req.password)
    if staff is None:
        logger.warning("Failed sign-in for %s", req.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization failed: invalid credentials.",
        )

    session = start_session(db, staff)
    token = create_jwt(staff, session.id)
    return AuthResponse(message="Login successful.", token=token, name=staff.name, role=staff.role)


@app.post("/auth/logout")
def logout(ctx: SessionContext = Depends(get_current_session), db: Session = Depends(get_db)):
    session = db.get(models.StaffSession, ctx.session_id)
    end_session(db, session)
    return {"ok": True}


@app.post("/auth/heartbeat")
def heartbeat(ctx: SessionContext = Depends(get_current_session)):
    """
    Activity signal from the console (pointer, keys, scroll, touch).
    The session dependency already moved last_seen_at forward.
    """
    return {
        "status": "ok",
        "idle_timeout_seconds": int(timedelta(minutes=settings.IDLE_TIMEOUT_MINUTES).total_seconds()),
    }


@app.get("/auth/me", response_model=SessionOut)
def me(ctx: SessionContext = Depends(get_current_session)) -> SessionOut:
    return SessionOut(
        staff_id=ctx.staff_id,
        email=ctx.email,
        name=ctx.name,
        role=ctx.role,
        menu=[{"path": item.path, "label": item.label} for item in menu.visible_menu(ctx.role)],
    )


@app.get("/api/menu")
def get_menu(ctx: SessionContext = Depends(get_current_session)):
    return [{"path": item.path, "label": item.label} for item in menu.visible_menu(ctx.role)]


# ---------- Дашборд ----------

@app.get("/api/dashboard", response_model=DashboardOut)
def dashboard(db: Session = Depends(get_db), ctx: SessionContext = Depends(can_read)):
    return story.dashboard_stats(db)


# ---------- Истории ----------

@app.post("/api/stories")
def create_story_endpoint(
    payload: StoryCreate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    db_story = story.create_story(db, **payload.model_dump())
    return {"id": db_story.id}


@app.get("/api/stories", response_model=List[StoryOut])
def list_stories_endpoint(
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    return story.list_stories(db, search=q)


@app.get("/api/stories/{story_id}", response_model=StoryOut)
def get_story_endpoint(
    story_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    db_story = _get_story_or_404(db, story_id)
    episodes = story.load_episodes(db, db_story)
    out = StoryOut.model_validate(db_story)
    out.episodes = episodes
    return out


@app.put("/api/stories/{story_id}", response_model=StoryOut)
def update_story_endpoint(
    story_id: str,
    payload: StoryUpdate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    """Меняются только переданные поля; эпизоды здесь не трогаем."""
    _get_story_or_404(db, story_id)
    return story.update_story(db, story_id, payload.model_dump(exclude_unset=True))


@app.delete("/api/stories/{story_id}")
def delete_story_endpoint(
    story_id: str,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    _get_story_or_404(db, story_id)
    _require_confirmation(confirm)
    story.delete_story(db, story_id)
    return {"ok": True}


# ---------- Эпизоды ----------

@app.post("/api/stories/{story_id}/episodes", response_model=EpisodeList)
def add_episode_endpoint(
    story_id: str,
    payload: EpisodeCreate,
    db: Session = Depends(get_db),
    sequencer: EpisodeSequencer = Depends(get_sequencer),
    ctx: SessionContext = Depends(can_manage),
):
    episodes = story.load_episodes(db, _get_story_or_404(db, story_id))
    return _apply(story_id, lambda: sequencer.append(story_id, episodes, payload.model_dump()))


@app.patch("/api/stories/{story_id}/episodes/{episode_id}", response_model=EpisodeList)
def update_episode_endpoint(
    story_id: str,
    episode_id: str,
    payload: EpisodeUpdate,
    db: Session = Depends(get_db),
    sequencer: EpisodeSequencer = Depends(get_sequencer),
    ctx: SessionContext = Depends(can_manage),
):
    episodes = story.load_episodes(db, _get_story_or_404(db, story_id))
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    return _apply(
        story_id,
        lambda: sequencer.update_at(story_id, episodes, index_of(episodes, episode_id), changes),
    )


@app.delete("/api/stories/{story_id}/episodes/{episode_id}", response_model=EpisodeList)
def delete_episode_endpoint(
    story_id: str,
    episode_id: str,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
    sequencer: EpisodeSequencer = Depends(get_sequencer),
    ctx: SessionContext = Depends(can_manage),
):
    episodes = story.load_episodes(db, _get_story_or_404(db, story_id))
    _require_confirmation(confirm)
    return _apply(story_id, lambda: sequencer.remove_at(story_id, episodes, index_of(episodes, episode_id)))


@app.post("/api/stories/{story_id}/episodes/{episode_id}/move", response_model=EpisodeList)
def move_episode_endpoint(
    story_id: str,
    episode_id: str,
    payload: EpisodeMove,
    db: Session = Depends(get_db),
    sequencer: EpisodeSequencer = Depends(get_sequencer),
    ctx: SessionContext = Depends(can_manage),
):
    episodes = story.load_episodes(db, _get_story_or_404(db, story_id))
    return _apply(
        story_id,
        lambda: sequencer.move_by_swap(story_id, episodes, index_of(episodes, episode_id), payload.direction),
    )


@app.post("/api/stories/{story_id}/episodes/reorder", response_model=EpisodeList)
def reorder_episodes_endpoint(
    story_id: str,
    payload: EpisodeReposition,
    db: Session = Depends(get_db),
    sequencer: EpisodeSequencer = Depends(get_sequencer),
    ctx: SessionContext = Depends(can_manage),
):
    """Drag & drop: вынуть эпизод с from_index и вставить на to_index."""
    episodes = story.load_episodes(db, _get_story_or_404(db, story_id))
    return _apply(
        story_id,
        lambda: sequencer.move_by_reposition(story_id, episodes, payload.from_index, payload.to_index),
    )


# ---------- Featured / Trending ----------

@app.get("/api/sections/{flag}", response_model=SectionOut)
def get_section(
    flag: story.StoryFlag,
    q: str = "",
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    active, candidates = story.list_section(db, flag, search=q)
    return SectionOut(
        flag=flag.value,
        active=[StoryOut.model_validate(s) for s in active],
        candidates=[StoryOut.model_validate(s) for s in candidates],
    )


@app.put("/api/sections/{flag}/{story_id}", response_model=StoryOut)
def add_to_section(
    flag: story.StoryFlag,
    story_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    _get_story_or_404(db, story_id)
    return story.set_flag(db, story_id, flag, True)


@app.delete("/api/sections/{flag}/{story_id}", response_model=StoryOut)
def remove_from_section(
    flag: story.StoryFlag,
    story_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    _get_story_or_404(db, story_id)
    return story.set_flag(db, story_id, flag, False)


# ---------- Жанры ----------

@app.get("/api/genres", response_model=List[GenreOut])
def list_genres_endpoint(db: Session = Depends(get_db), ctx: SessionContext = Depends(can_manage)):
    return story.list_genres(db)


@app.post("/api/genres", response_model=GenreOut)
def create_genre_endpoint(
    payload: GenreIn,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    if story.find_genre_by_name(db, payload.name):
        raise HTTPException(status_code=400, detail="Genre already exists.")
    genre = models.Genre(name=payload.name)
    db.add(genre)
    db.commit()
    db.refresh(genre)
    return genre


@app.put("/api/genres/{genre_id}", response_model=GenreOut)
def rename_genre_endpoint(
    genre_id: int,
    payload: GenreIn,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    genre = db.get(models.Genre, genre_id)
    if genre is None:
        raise HTTPException(status_code=404, detail="Genre not found")
    existing = story.find_genre_by_name(db, payload.name)
    if existing and existing.id != genre_id:
        raise HTTPException(status_code=400, detail="Genre already exists.")
    genre.name = payload.name
    db.commit()
    db.refresh(genre)
    return genre


@app.delete("/api/genres/{genre_id}")
def delete_genre_endpoint(
    genre_id: int,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_manage),
):
    # истории с этим жанром не трогаем
    genre = db.get(models.Genre, genre_id)
    if genre is None:
        raise HTTPException(status_code=404, detail="Genre not found")
    db.delete(genre)
    db.commit()
    return {"ok": True}


# ---------- Пользователи приложения ----------

@app.get("/api/users", response_model=UsersPage)
def list_users_endpoint(
    q: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_view_users),
):
    total, users = story.list_app_users(db, search=q, limit=limit)
    return UsersPage(
        total=total,
        premium=sum(1 for u in users if u.premium),
        users=[AppUserOut.model_validate(u) for u in users],
    )


# ---------- Маркетинг ----------

@app.post("/api/marketing/notifications", response_model=NotificationOut)
def send_notification_endpoint(
    payload: NotificationCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    client: marketing.PushClient = Depends(get_push_client),
    session_factory=Depends(get_session_factory),
    ctx: SessionContext = Depends(can_market),
):
    notification = marketing.queue_notification(db, **payload.model_dump())
    background_tasks.add_task(marketing.dispatch_in_background, notification.id, client, session_factory)
    return notification


@app.get("/api/marketing/notifications", response_model=List[NotificationOut])
def notification_history_endpoint(
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_market),
):
    return marketing.list_history(db)


# ---------- Настройки приложения ----------

@app.get("/api/settings", response_model=AppConfigSchema)
def get_settings_endpoint(db: Session = Depends(get_db), ctx: SessionContext = Depends(can_configure)):
    return story.get_app_config(db)


@app.put("/api/settings", response_model=AppConfigSchema)
def save_settings_endpoint(
    payload: AppConfigSchema,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(can_configure),
):
    return story.save_app_config(db, payload)


# ---------- Медиа ----------

@app.post("/api/media/covers")
async def upload_cover(
    image: UploadFile = File(...),
    ctx: SessionContext = Depends(can_manage),
    storage: MediaStorage = Depends(get_storage),
):
    if image.content_type not in ("image/png", "image/jpeg", "image/webp"):
        raise HTTPException(status_code=400, detail="Invalid image type")

    file_bytes = await image.read()

    if len(file_bytes) > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="File too large")

    try:
        url = storage.upload_cover(file_bytes=file_bytes, content_type=image.content_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Upload failed: {e}")

    return {"url": url}
