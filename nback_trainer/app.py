"""Pygame UI shell for the Dual N-Back Trainer.

Screens: main menu, training (3x3 grid + letter cue), statistics, settings.
Deterministic timing/scoring/RNG/state lives in nback_trainer/* (core modules);
this module only renders payloads and forwards key presses.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import SessionStatus, Trial
from .driver import NBackDriver, NBackPayload
from .persistence import SessionStore
from .session import NBackSession
from .speech import OfflineTtsSpeaker
from .stats import summarize

logger = logging.getLogger(__name__)

DB_PATH_ENV = "NBACK_DB_PATH"

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
CELL_IDLE = (9, 20, 106)
CELL_LIT = (244, 248, 255)
FLASH_ON = (92, 196, 120)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str | Callable[[], str]
    action: Callable[[], None]

    def text(self) -> str:
        return self.label() if callable(self.label) else self.label


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class MenuScreen:
    def __init__(
        self,
        app: App,
        title: str,
        items: list[MenuItem],
        *,
        is_root: bool = False,
        on_back: Callable[[], None] | None = None,
    ) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._on_back = on_back
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._on_back is not None:
            self._on_back()
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        frame = _frame_rect(w, h)
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(frame.centerx, frame.y + 18)))

        row_h = 40
        y = frame.y + 80
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 40, y, frame.w - 80, row_h - 6)
            selected = idx == self._selected
            pygame.draw.rect(surface, CELL_LIT if selected else CELL_IDLE, row)
            color = (14, 26, 74) if selected else TEXT_MAIN
            text = self._item_font.render(item.text(), True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h

        foot = self._hint_font.render("Enter/Space: Select  |  Esc: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class TrainingScreen:
    """A: position match  |  F: audio match  |  Space: start/pause  |  Esc: leave."""

    def __init__(self, app: App, *, driver: NBackDriver, speaker: OfflineTtsSpeaker) -> None:
        self._app = app
        self._driver = driver
        self._speaker = speaker
        self._small_font = pygame.font.Font(None, 26)
        self._letter_font = pygame.font.Font(None, 120)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        status = self._driver.status
        if key == pygame.K_a:
            self._driver.press_position()
        elif key == pygame.K_f:
            self._driver.press_audio()
        elif key == pygame.K_SPACE:
            if status in (SessionStatus.IDLE, SessionStatus.FINISHED):
                self._driver.start()
            else:
                self._driver.toggle_pause()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._leave()

    def _leave(self) -> None:
        status = self._driver.status
        if status in (SessionStatus.WARMUP, SessionStatus.PLAYING):
            # Pausing stores the recovery snapshot offered by "Resume".
            self._driver.toggle_pause()
        if self._driver.status is not SessionStatus.FINISHED:
            self._driver.session.reset_session()
        self._speaker.stop()
        self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        self._driver.update()
        self._speaker.update()
        payload = self._driver.snapshot()

        w, h = surface.get_size()
        surface.fill(BG)
        frame = _frame_rect(w, h)
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        header = f"{payload.n_level}-back   {_status_label(payload)}"
        if payload.trial_number:
            header += f"   Trial {payload.trial_number}/{payload.total_trials}"
        head = self._app.font.render(header, True, TEXT_MAIN)
        surface.blit(head, (frame.x + 20, frame.y + 14))

        if payload.status is SessionStatus.FINISHED and payload.record is not None:
            self._render_results(surface, frame, payload)
        elif payload.status is SessionStatus.IDLE:
            self._blit_center(surface, frame, "Press Space to start")
        else:
            self._render_grid(surface, frame, payload)
            if payload.status is SessionStatus.PAUSED:
                self._blit_center(surface, frame, "Paused - Space to resume")

        hint = "A: position   F: audio   Space: start/pause   Esc: menu"
        foot = self._small_font.render(hint, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))

    def _render_grid(self, surface: pygame.Surface, frame: pygame.Rect, payload: NBackPayload) -> None:
        cols = 3
        cell = max(40, min(110, (frame.h - 120) // cols))
        gap = 8
        grid_w = cols * cell + (cols - 1) * gap
        origin_x = frame.x + 60
        origin_y = frame.y + (frame.h - grid_w) // 2

        for slot in range(cols * cols):
            r, c = divmod(slot, cols)
            rect = pygame.Rect(origin_x + c * (cell + gap), origin_y + r * (cell + gap), cell, cell)
            lit = payload.position == slot
            pygame.draw.rect(surface, CELL_LIT if lit else CELL_IDLE, rect)
            pygame.draw.rect(surface, (62, 84, 152), rect, 1)

        letter_box = pygame.Rect(origin_x + grid_w + 80, origin_y, cell * 2, cell * 2)
        pygame.draw.rect(surface, CELL_IDLE, letter_box)
        pygame.draw.rect(surface, (62, 84, 152), letter_box, 1)
        if payload.letter is not None:
            letter = self._letter_font.render(payload.letter, True, TEXT_MAIN)
            surface.blit(letter, letter.get_rect(center=letter_box.center))

        flashes = (("A  position", payload.position_pressed), ("F  audio", payload.audio_pressed))
        y = letter_box.bottom + 20
        for label, on in flashes:
            text = self._small_font.render(label, True, FLASH_ON if on else TEXT_MUTED)
            surface.blit(text, (letter_box.x, y))
            y += 28

    def _render_results(self, surface: pygame.Surface, frame: pygame.Rect, payload: NBackPayload) -> None:
        rec = payload.record
        assert rec is not None
        lines = [
            "Results",
            f"Combined accuracy: {rec.combined_accuracy}%",
            f"Position: {rec.position_accuracy}%  (hits {rec.position_hits}, false alarms {rec.position_false_alarms})",
            f"Audio: {rec.audio_accuracy}%  (hits {rec.audio_hits}, false alarms {rec.audio_false_alarms})",
            f"Mean reaction time: {rec.avg_reaction_time_ms} ms",
        ]
        if payload.level_change is not None:
            prev, nxt = payload.level_change
            if nxt > prev:
                lines.append(f"Level up! Next session: {nxt}-back")
            elif nxt < prev:
                lines.append(f"Level down. Next session: {nxt}-back")
            else:
                lines.append(f"Next session: {nxt}-back")
        lines.append("Space: train again   Esc: menu")

        y = frame.y + 70
        for line in lines:
            text = self._app.font.render(line, True, TEXT_MAIN)
            surface.blit(text, (frame.x + 40, y))
            y += 40

    def _blit_center(self, surface: pygame.Surface, frame: pygame.Rect, message: str) -> None:
        text = self._app.font.render(message, True, TEXT_MAIN)
        surface.blit(text, text.get_rect(center=frame.center))


class StatsScreen:
    def __init__(self, app: App, *, store: SessionStore) -> None:
        self._app = app
        self._store = store
        self._lines: list[str] = []
        self._small_font = pygame.font.Font(None, 26)
        self.refresh()

    def refresh(self) -> None:
        sessions = self._store.load_sessions()
        s = summarize(sessions)
        self._lines = [
            f"Sessions: {s.total_sessions}  (completed {s.completed_sessions})",
            f"Average accuracy: {s.average_accuracy}%",
            f"Average reaction time: {s.average_reaction_time_ms} ms",
            f"Best level: {s.best_n_level}-back",
            f"Current streak: {s.current_streak} day(s)",
            f"Training time: {s.total_training_minutes} min",
        ]
        for row in s.accuracy_by_level:
            self._lines.append(f"  {row.level}-back: {row.avg_accuracy}% over {row.session_count} session(s)")
        for rec in s.recent_sessions[:3]:
            when = datetime.fromtimestamp(rec.timestamp).strftime("%Y-%m-%d %H:%M")
            self._lines.append(f"  {when}  {rec.n_level}-back  {rec.combined_accuracy}%")

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        frame = _frame_rect(w, h)
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)
        title = self._app.font.render("Statistics", True, TEXT_MAIN)
        surface.blit(title, (frame.x + 20, frame.y + 14))
        y = frame.y + 60
        for line in self._lines:
            text = self._small_font.render(line, True, TEXT_MAIN)
            surface.blit(text, (frame.x + 30, y))
            y += 28


def _frame_rect(w: int, h: int) -> pygame.Rect:
    margin = max(10, min(26, w // 34))
    return pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))


def _status_label(payload: NBackPayload) -> str:
    if payload.status is SessionStatus.WARMUP:
        return "Warm-up"
    if payload.status is SessionStatus.PLAYING:
        return "Playing"
    if payload.status is SessionStatus.PAUSED:
        return "Paused"
    if payload.status is SessionStatus.FINISHED:
        return "Finished"
    return "Ready"


def _db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit)
    return SessionStore.default_path()


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()

    pygame.display.set_caption("Dual N-Back Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    store = SessionStore(_db_path())
    session = NBackSession(clock=RealClock(), settings=store.load_settings())
    speaker = OfflineTtsSpeaker()

    def speak_letter(trial: Trial) -> None:
        if session.sound_effects_enabled:
            speaker.speak(trial.letter)

    driver = NBackDriver(session=session, clock=RealClock(), store=store, on_stimulus=speak_letter)

    def open_training() -> None:
        app.push(TrainingScreen(app, driver=driver, speaker=speaker))

    def open_resume() -> None:
        if driver.resume_interrupted():
            open_training()

    def open_stats() -> None:
        app.push(StatsScreen(app, store=store))

    def cycle_level() -> None:
        level = session.n_level + 1
        session.set_n_level(session.config.min_level if level > session.config.max_level else level)

    def save_settings() -> None:
        store.save_settings(session.settings_update())

    settings_menu = MenuScreen(
        app,
        "Settings",
        [
            MenuItem(lambda: f"Adaptive mode: {'On' if session.adaptive_mode else 'Off'}", session.toggle_adaptive_mode),
            MenuItem(lambda: f"N level: {session.n_level}", cycle_level),
            MenuItem(lambda: f"Letter voice: {'On' if session.sound_effects_enabled else 'Off'}", session.toggle_sound_effects),
            MenuItem("Back", lambda: (save_settings(), app.pop())),
        ],
        on_back=save_settings,
    )

    main_items = [
        MenuItem("Train", open_training),
        MenuItem("Resume interrupted session", open_resume),
        MenuItem("Statistics", open_stats),
        MenuItem("Settings", lambda: app.push(settings_menu)),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Dual N-Back", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        driver.save_progress()
        speaker.stop()
        pygame.quit()

    return 0
