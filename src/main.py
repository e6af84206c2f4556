"""Command-line entry point for the novel script player."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence, TextIO

from novelscript import (
    ChapterProject,
    FileCursorStore,
    InMemoryCursorStore,
    Interpreter,
    NovelScriptError,
    PlayerSettings,
    ScriptFetcher,
    compute_scene_reachability,
    is_project_source,
    lint_scenario,
    parse_and_validate,
)
from novelscript.lint import format_lint_report, has_errors
from novelscript.persistence import CursorStore
from novelscript.store import PresentationSnapshot

logger = logging.getLogger("novelscript.cli")

InputFunc = Callable[[str], str]


class TranscriptLogger:
    """Structured writer that records play transcripts for debugging."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._line = 0

    def log_player_input(self, text: str) -> None:
        """Record the player's latest command."""

        formatted = text if text else "(empty)"
        self._write(f"Player input: {formatted}")
        self._stream.flush()

    def log_dialog(self, speaker: str | None, text: str) -> None:
        """Record one fully revealed dialog line."""

        self._line += 1
        self._write(f"=== Line {self._line} ===")
        self._write(f"  {speaker or '(narration)'}: {text}")
        self._stream.flush()

    def _write(self, text: str) -> None:
        self._stream.write(f"{text}\n")


def _dialog_line(snapshot: PresentationSnapshot) -> str:
    speaker = snapshot.dialog.speaker
    text = snapshot.dialog.full_text
    return f"{speaker}: {text}" if speaker else text


def run_play(
    interpreter: Interpreter,
    *,
    input_func: InputFunc | None = None,
    output: TextIO | None = None,
    transcript_logger: TranscriptLogger | None = None,
) -> int:
    """Drive a loaded interpreter with ``input``/``print`` until it stops.

    Timers are fast-forwarded so every line is shown fully revealed. Returns
    the process exit status: ``0`` on a finished story or when the player
    quits, ``1`` when playback stopped with an error.
    """

    stream = output if output is not None else sys.stdout
    read = input_func if input_func is not None else input

    def emit(text: str = "") -> None:
        stream.write(f"{text}\n")

    def ask(prompt: str) -> str | None:
        try:
            reply = read(prompt)
        except EOFError:
            return None
        if transcript_logger is not None:
            transcript_logger.log_player_input(reply)
        if reply.strip().lower() in {"q", "quit"}:
            return None
        return reply

    last_line: str | None = None
    while True:
        interpreter.scheduler.run_until_idle()
        snapshot = interpreter.snapshot

        if interpreter.error is not None:
            emit(f"Error: {interpreter.error.message}")
            return 1
        if snapshot.is_finished:
            ending_id = snapshot.ending_id
            game = interpreter.game
            if ending_id and game is not None and ending_id in game.endings:
                ending = game.endings[ending_id]
                emit(f"*** {ending.title} ***")
                if ending.description:
                    emit(ending.description)
            else:
                emit("*** The End ***")
            return 0
        if snapshot.video.active:
            emit(f"[video] {snapshot.video.src}")
            interpreter.complete_video()
            continue

        line = _dialog_line(snapshot)
        if snapshot.dialog.full_text and line != last_line:
            emit(line)
            if transcript_logger is not None:
                transcript_logger.log_dialog(snapshot.dialog.speaker, snapshot.dialog.full_text)
        last_line = line

        if snapshot.choice_gate is not None:
            for number, option in enumerate(snapshot.choice_gate.options, start=1):
                emit(f"  {number}. {option.text}")
            reply = ask("> ")
            if reply is None:
                return 0
            try:
                index = int(reply.strip()) - 1
            except ValueError:
                emit("Please enter the number of a choice.")
                continue
            interpreter.submit_choice(index)
            continue
        if snapshot.input_gate is not None:
            reply = ask("? ")
            if reply is None:
                return 0
            interpreter.submit_input(reply)
            continue
        if snapshot.waiting_input:
            if ask("") is None:
                return 0
            interpreter.advance()
            continue

        # Nothing is scheduled and nothing waits for the player.
        emit("Playback stalled.")
        return 1


def _cursor_store(settings: PlayerSettings, args: argparse.Namespace) -> CursorStore | None:
    if args.no_persistence:
        return None
    save_dir: Path | None = args.save_dir or settings.save_dir
    if save_dir is None:
        return InMemoryCursorStore()
    return FileCursorStore(save_dir)


def _validate_project(args: argparse.Namespace, fetcher: ScriptFetcher) -> int:
    project = ChapterProject(args.script, fetcher)
    chapters = []
    try:
        for chapter_path in project.chapters():
            chapters.append((chapter_path, project.load(chapter_path)))
    except NovelScriptError as exc:
        if args.json:
            print(json.dumps(exc.to_payload().model_dump(), indent=2))
        else:
            print(f"Invalid project: {exc.message}")
        return 1

    title = project.config().data.title
    if args.json:
        print(
            json.dumps(
                {
                    "valid": True,
                    "title": title,
                    "chapters": [
                        {
                            "path": chapter_path,
                            "scenes": len(graph.scenes),
                            "unreachableScenes": list(
                                compute_scene_reachability(graph).unreachable_scenes
                            ),
                        }
                        for chapter_path, graph in chapters
                    ],
                },
                indent=2,
            )
        )
        return 0

    print(f"'{title}' is valid ({len(chapters)} chapters).")
    for chapter_path, graph in chapters:
        report = compute_scene_reachability(graph)
        print(f"  {chapter_path}: {len(graph.scenes)} scenes")
        if not report.fully_reachable:
            print("    Unreachable scenes: " + ", ".join(report.unreachable_scenes))
    return 0


def _command_validate(args: argparse.Namespace, settings: PlayerSettings) -> int:
    fetcher = ScriptFetcher(timeout=settings.http_timeout)
    if is_project_source(args.script):
        return _validate_project(args, fetcher)
    try:
        graph = parse_and_validate(fetcher.fetch(args.script).text)
    except NovelScriptError as exc:
        if args.json:
            print(json.dumps(exc.to_payload().model_dump(), indent=2))
        else:
            print(f"Invalid script: {exc.message}")
        return 1

    report = compute_scene_reachability(graph)
    if args.json:
        print(
            json.dumps(
                {
                    "valid": True,
                    "title": graph.meta.title,
                    "scenes": len(graph.scenes),
                    "unreachableScenes": list(report.unreachable_scenes),
                },
                indent=2,
            )
        )
        return 0

    print(f"'{graph.meta.title}' is valid ({len(graph.scenes)} scenes).")
    if not report.fully_reachable:
        print("Unreachable scenes: " + ", ".join(report.unreachable_scenes))
    return 0


def _command_lint(args: argparse.Namespace, settings: PlayerSettings) -> int:
    try:
        document = json.loads(args.scenario.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Failed to read scenario '{args.scenario}': {exc}")
        return 2

    issues = lint_scenario(document)
    if args.json:
        print(json.dumps([issue.to_payload() for issue in issues], indent=2))
    else:
        print(format_lint_report(issues))
    return 1 if has_errors(issues) else 0


def _command_play(args: argparse.Namespace, settings: PlayerSettings) -> int:
    interpreter = Interpreter(
        cursor_store=_cursor_store(settings, args),
        fetcher=ScriptFetcher(timeout=settings.http_timeout),
        loop_guard=settings.loop_guard,
    )
    if args.restart and interpreter.cursor_store is not None:
        interpreter.cursor_store.delete(interpreter.autosave_key)

    if not interpreter.load_game(args.script):
        assert interpreter.error is not None
        print(f"Failed to load '{args.script}': {interpreter.error.message}")
        return 2

    assert interpreter.game is not None
    print(f"Now playing: {interpreter.game.meta.title}")
    print("Press Enter to continue. Type 'quit' at any time to stop.")
    print()

    log_handle: TextIO | None = None
    transcript_logger: TranscriptLogger | None = None
    try:
        if args.log_file is not None:
            args.log_file.parent.mkdir(parents=True, exist_ok=True)
            log_handle = args.log_file.open("a", encoding="utf-8")
            transcript_logger = TranscriptLogger(log_handle)
        return run_play(interpreter, transcript_logger=transcript_logger)
    finally:
        if log_handle is not None:
            log_handle.close()


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Novel script player and tools")
    parser.add_argument(
        "--log-level",
        type=str,
        help=(
            "Logging verbosity (DEBUG, INFO, WARNING, ERROR). "
            "Defaults to NOVELSCRIPT_LOG_LEVEL when unset."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Parse and validate a script.")
    validate.add_argument("script", help="Path or URL of a YAML script or project root.")
    validate.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON.",
    )

    lint = subparsers.add_parser("lint", help="Lint an authoring-tool scenario graph.")
    lint.add_argument("scenario", type=Path, help="Path to a JSON scenario document.")
    lint.add_argument(
        "--json",
        action="store_true",
        help="Print the issues as JSON.",
    )

    play = subparsers.add_parser("play", help="Play a script in the terminal.")
    play.add_argument("script", help="Path or URL of a YAML script or project root.")
    play.add_argument(
        "--save-dir",
        type=Path,
        help=(
            "Directory where autosaves are stored. "
            "Defaults to NOVELSCRIPT_SAVE_DIR when unset."
        ),
    )
    play.add_argument(
        "--no-persistence",
        action="store_true",
        help="Disable autosave and resume for this session.",
    )
    play.add_argument(
        "--restart",
        action="store_true",
        help="Discard any autosave and start from the first scene.",
    )
    play.add_argument(
        "--log-file",
        type=Path,
        help="Path to a transcript log capturing dialog and player input.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Run the requested command and exit with its status."""

    args = _parse_args(argv)
    try:
        settings = PlayerSettings.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        raise SystemExit(2) from exc

    level = settings.numeric_log_level
    if args.log_level:
        resolved = logging.getLevelName(args.log_level.strip().upper())
        if not isinstance(resolved, int):
            print(f"Unknown log level '{args.log_level}'.")
            raise SystemExit(2)
        level = resolved
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "validate": _command_validate,
        "lint": _command_lint,
        "play": _command_play,
    }
    logger.debug("Running command %s", args.command)
    raise SystemExit(commands[args.command](args, settings))


if __name__ == "__main__":
    main()
