from __future__ import annotations

import importlib.util
import logging
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)


class OfflineTtsSpeaker:
    """Best-effort offline TTS for the letter cue via isolated subprocesses.

    Letters are short, so only the newest pending letter is kept; a cue that
    arrives while another is still speaking replaces the queued one.
    """

    _max_utterance_s = 2.5

    def __init__(self) -> None:
        self._enabled = False
        self._backends: list[str] = []
        self._backend: str | None = None
        self._pending: str | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None
        self._active_started_s = 0.0

        if os.environ.get("NBACK_DISABLE_TTS", "0") == "1":
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            # Keep automated/headless runs silent and stable.
            return

        self._backends = self._resolve_backends()
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None
        if not self._enabled:
            logger.info("No offline TTS backend found; letter cues are visual only")

    @property
    def enabled(self) -> bool:
        return bool(self._enabled)

    @property
    def backend(self) -> str | None:
        return self._backend

    def speak(self, text: str) -> None:
        if not self._enabled:
            return
        phrase = " ".join(str(text).strip().split())
        if phrase:
            self._pending = phrase

    def update(self) -> None:
        if not self._enabled:
            return

        proc = self._active_proc
        if proc is not None:
            if proc.poll() is None:
                if (time.monotonic() - self._active_started_s) > self._max_utterance_s:
                    self._terminate_process(proc)
                    self._active_proc = None
            else:
                self._active_proc = None

        if self._active_proc is not None or self._pending is None:
            return

        while self._pending is not None and self._enabled:
            launched = self._launch_process(self._pending)
            if launched is not None:
                self._pending = None
                self._active_proc = launched
                self._active_started_s = time.monotonic()
                return
            self._drop_current_backend()

        if not self._enabled:
            self._pending = None

    def stop(self) -> None:
        self._pending = None
        proc = self._active_proc
        self._active_proc = None
        if proc is not None:
            self._terminate_process(proc)

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
            proc.wait(timeout=0.5)
        except subprocess.TimeoutExpired:
            proc.kill()
        except OSError:
            return

    @staticmethod
    def _resolve_backends() -> list[str]:
        supported = ("say", "powershell", "espeak", "spd-say", "pyttsx3-subprocess")
        forced = os.environ.get("NBACK_TTS_BACKEND", "").strip().lower()
        if forced in supported and OfflineTtsSpeaker._backend_available(forced):
            return [forced]

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("espeak", "spd-say", "pyttsx3-subprocess"))
        return [name for name in dict.fromkeys(candidates) if OfflineTtsSpeaker._backend_available(name)]

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "say":
            return (shutil.which("say") is not None) or Path("/usr/bin/say").exists()
        if name == "powershell":
            return (shutil.which("powershell") is not None) or (shutil.which("pwsh") is not None)
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        if name in ("espeak", "spd-say"):
            return shutil.which(name) is not None
        return False

    def _drop_current_backend(self) -> None:
        backend = self._backend
        if backend is None:
            self._enabled = False
            return
        logger.warning("TTS backend %s failed; dropping it", backend)
        self._backends = [name for name in self._backends if name != backend]
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None

    def _command(self, backend: str, text: str) -> list[str] | None:
        if backend == "say":
            return [shutil.which("say") or "/usr/bin/say", "-r", "176", text]
        if backend == "powershell":
            ps_bin = shutil.which("powershell") or shutil.which("pwsh")
            if ps_bin is None:
                return None
            script = (
                "Add-Type -AssemblyName System.Speech; "
                "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
                "$s.Speak(($args -join ' '));"
            )
            return [ps_bin, "-NoProfile", "-NonInteractive", "-Command", script, text]
        if backend == "espeak":
            return ["espeak", "-s", "176", text]
        if backend == "spd-say":
            return ["spd-say", "--wait", text]
        if backend == "pyttsx3-subprocess":
            script = (
                "import sys\n"
                "import pyttsx3\n"
                "e=pyttsx3.init()\n"
                "e.say(' '.join(sys.argv[1:]))\n"
                "e.runAndWait()\n"
            )
            return [sys.executable, "-c", script, text]
        return None

    def _launch_process(self, text: str) -> subprocess.Popen[bytes] | None:
        backend = self._backend
        if backend is None:
            return None
        cmd = self._command(backend, text)
        if cmd is None:
            return None
        try:
            return subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError:
            return None
