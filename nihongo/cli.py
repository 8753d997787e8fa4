#!/usr/bin/env python3
"""Command-line front end for the Japanese learning assistant."""
import argparse
import asyncio
import mimetypes
import sys
from typing import List, Optional

from nihongo.ai import get_ai_client
from nihongo.app import NihongoApp
from nihongo.audio import encode_to_transferable, play
from nihongo.config import Settings
from nihongo.errors import NihongoError
from nihongo.logger import logger
from nihongo.prompts import AUTO_DETECT, SUPPORTED_LANGUAGES
from nihongo.schema import DictionaryEntry, HistoryItem, PronunciationResult, TranslationResult
from nihongo.store import HistoryStore, SqliteKeyValueStore, export_filename


def format_result(result: TranslationResult, app: Optional[NihongoApp] = None) -> str:
    lines = [
        result.japanese,
        f"  {result.romaji}",
        f"  Pronunciation: {result.pronunciation}",
        f"  Meaning: {result.englishMeaning}",
        f"  Tone: {result.tone.value}",
    ]
    if app is not None and app.tone_description:
        lines.append(f"    {app.tone_description}")
    if result.culturalNote:
        lines.append(f"  Cultural note: {result.culturalNote}")
    if result.breakdown:
        lines.append("  Vocabulary:")
    for item in result.breakdown:
        lines.append(f"    {item.word} ({item.romaji}) - {item.meaning} [{item.partOfSpeech}]")
        example = app.examples.sentence_for(item) if app is not None else item.exampleSentence
        if example:
            japanese, translation = item.example_parts(example)
            lines.append(f"      e.g. {japanese}")
            if translation:
                lines.append(f"           {translation}")
    return "\n".join(lines)


def format_entry(entry: DictionaryEntry) -> str:
    header = f"{entry.word} 【{entry.reading}】 {entry.romaji} [{entry.partOfSpeech}]"
    if entry.jlptLevel:
        header += f" JLPT {entry.jlptLevel}"
    lines = [header]
    lines.extend(f"  {i}. {meaning}" for i, meaning in enumerate(entry.meanings, 1))
    for kanji in entry.kanjiBreakdown or []:
        lines.append(f"  {kanji.character}: {kanji.meaning} (on: {kanji.onyomi}, kun: {kanji.kunyomi})")
    if entry.usageNotes:
        lines.append(f"  Usage: {entry.usageNotes}")
    for example in entry.exampleSentences:
        lines.append(f"  ・{example.ja}")
        lines.append(f"    {example.en}")
    return "\n".join(lines)


def format_item(item: HistoryItem) -> str:
    return f"[{item.id}] {item.result.japanese} ({item.result.romaji}) \"{item.originalText}\""


def format_practice(result: PronunciationResult) -> str:
    return f"Score: {result.score}/100\n  Heard: {result.transcript}\n  {result.feedback}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nihongo", description="AI-powered Japanese translator and tutor")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("translate", help="Translate text to Japanese")
    p.add_argument("text", nargs="+", help="Text to translate")
    p.add_argument("--from", dest="source", default=AUTO_DETECT,
                   choices=[code for code, _ in SUPPORTED_LANGUAGES], help="Source language code")
    p.add_argument("--save", action="store_true", help="Toggle the result in saved items")
    p.add_argument("--speak", action="store_true", help="Read the translation aloud")
    p.add_argument("--speed", type=float, default=1.0, help="Playback speed (0.5-1.5)")
    p.add_argument("--examples", action="store_true", help="Fetch missing example sentences")

    p = sub.add_parser("lookup", help="Look up a word in the dictionary")
    p.add_argument("query", nargs="+")

    p = sub.add_parser("speak", help="Read Japanese text aloud")
    p.add_argument("text", nargs="+")
    p.add_argument("--speed", type=float, default=1.0, help="Playback speed (0.5-1.5)")

    p = sub.add_parser("transcribe", help="Transcribe an audio file")
    p.add_argument("path")
    p.add_argument("--mime-type", default=None, help="Audio MIME type (guessed from the file name)")

    p = sub.add_parser("listen", help="Dictate from the microphone, then translate")
    p.add_argument("--from", dest="source", default=AUTO_DETECT,
                   choices=[code for code, _ in SUPPORTED_LANGUAGES], help="Source language code")
    p.add_argument("--no-translate", action="store_true", help="Only print the transcript")

    p = sub.add_parser("practice", help="Record yourself and score your pronunciation")
    p.add_argument("reference", nargs="*", help="Japanese phrase (defaults to the latest translation)")

    p = sub.add_parser("history", help="Recent translations")
    p.add_argument("action", nargs="?", default="list", choices=["list", "clear", "delete"])
    p.add_argument("item_id", nargs="?")

    p = sub.add_parser("saved", help="Saved translations")
    p.add_argument("action", nargs="?", default="list", choices=["list", "clear", "delete", "export", "import"])
    p.add_argument("target", nargs="?", help="Item id, or file path for export/import")

    p = sub.add_parser("theme", help="Show or change the theme preference")
    p.add_argument("theme", nargs="?", choices=["light", "dark", "toggle"])

    return parser


def _wait_for_enter(prompt: str) -> str:
    return input(prompt)


async def _record_until_enter(app: NihongoApp, practice: bool = False):
    started = app.start_practice() if practice else app.start_recording()
    if not started:
        return None
    await asyncio.get_running_loop().run_in_executor(None, _wait_for_enter, "🎙️ Recording... press Enter to stop ")
    print("⏳ Processing...")
    return await (app.stop_practice() if practice else app.stop_recording())


async def run_ai_command(args, app: NihongoApp) -> int:
    if args.command == "translate":
        app.input_text = " ".join(args.text)
        app.source_language = args.source
        if not await app.submit():
            print(f"❌ {app.error_message}")
            return 1
        if args.examples:
            app.request_examples()
            await app.examples.wait()
        print(format_result(app.result, app))
        if args.save:
            print("⭐ Saved" if app.toggle_save() else "☆ Removed from saved")
        if args.speak:
            await app.speak(speed=args.speed)
        return 0

    if args.command == "lookup":
        if not await app.lookup(" ".join(args.query)):
            print(f"❌ {app.dictionary_error}")
            return 1
        print(format_entry(app.dictionary_entry))
        return 0

    if args.command == "speak":
        audio = await app.speak(" ".join(args.text), speed=args.speed)
        if audio is None and app.notice:
            print(f"❌ {app.notice}")
            return 1
        return 0

    if args.command == "transcribe":
        mime_type = args.mime_type or mimetypes.guess_type(args.path)[0] or "audio/wav"
        with open(args.path, "rb") as f:
            payload = encode_to_transferable(f)
        print(await app.client.transcribe(payload, mime_type))
        return 0

    if args.command == "listen":
        await _record_until_enter(app)
        if app.notice:
            print(f"❌ {app.notice}")
            return 1
        if not app.input_text:
            print("Nothing detected.")
            return 0
        print(f"📝 {app.input_text}")
        if args.no_translate:
            return 0
        app.source_language = args.source
        if not await app.submit():
            print(f"❌ {app.error_message}")
            return 1
        print(format_result(app.result, app))
        return 0

    if args.command == "practice":
        if args.reference:
            reference = " ".join(args.reference)
            app.select_item(HistoryItem(id="practice", originalText=reference,
                                        result=_reference_result(reference), timestamp=0))
        else:
            history = app.store.history
            if not history:
                print("❌ Nothing to practice yet. Translate something first.")
                return 1
            app.select_item(history[0])
        print(f"Say: {app.result.japanese}")
        result = await _record_until_enter(app, practice=True)
        if result is None:
            print(f"❌ {app.practice_error or app.notice or 'Cannot start recording'}")
            return 1
        print(format_practice(result))
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def _reference_result(reference: str) -> TranslationResult:
    return TranslationResult(japanese=reference, romaji=reference, pronunciation="",
                             englishMeaning="", tone="Polite", breakdown=[])


def run_store_command(args, store: HistoryStore) -> int:
    if args.command == "theme":
        if args.theme == "toggle":
            store.toggle_theme()
        elif args.theme:
            store.set_theme(args.theme)
        print(store.theme)
        return 0

    name = args.command
    if args.action == "list":
        items = store.collection(name)
        if not items:
            print("(empty)")
        for item in items:
            print(format_item(item))
        return 0
    if args.action == "clear":
        if name == "history":
            store.clear_history()
        else:
            store.clear_saved()
        print(f"🗑️ Cleared {name}")
        return 0
    if args.action == "delete":
        target = getattr(args, "item_id", None) or getattr(args, "target", None)
        if not target:
            print("❌ An item id is required")
            return 1
        deleted = store.delete_history(target) if name == "history" else store.delete_saved(target)
        print("🗑️ Deleted" if deleted else f"❌ No item with id {target}")
        return 0 if deleted else 1
    if args.action == "export":
        path = args.target or export_filename("saved")
        with open(path, "w", encoding="utf-8") as f:
            f.write(store.export("saved"))
        print(f"💾 Exported {len(store.saved)} item(s) to {path}")
        return 0
    if args.action == "import":
        if not args.target:
            print("❌ A file path is required")
            return 1
        with open(args.target, "rb") as f:
            count = store.import_saved(f.read())
        print(f"📥 Imported {count} item(s)")
        return 0
    raise ValueError(f"Unknown action: {args.action}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    kv = SqliteKeyValueStore(settings.state_db_path)
    store = HistoryStore(kv, history_limit=settings.history_limit)
    try:
        if args.command in ("history", "saved", "theme"):
            return run_store_command(args, store)
        app = NihongoApp(get_ai_client(settings), store, player=play)
        return asyncio.run(run_ai_command(args, app))
    except NihongoError as e:
        logger.error(f"❌ {e}")
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    finally:
        kv.close()


if __name__ == "__main__":
    sys.exit(main())
