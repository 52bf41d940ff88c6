"""CLI entry point for History by People."""

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import typer

from . import __version__
from .config import config
from .models import (
    CompleteEvent,
    ErrorEvent,
    GenerationResult,
    Message,
    PersonaRecord,
    Phase,
    PipelineEvent,
    ProgressEvent,
    Role,
    Scene,
    SceneCompleteEvent,
    SceneStatus,
    StatusEvent,
)
from .storage import LocalStore, StorageManager

app = typer.Typer(
    name="history-by-people",
    help="Explore history through personal stories and generated visuals",
    no_args_is_help=True
)

EXIT_WORDS = ("exit", "quit", ":q")

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"history-by-people version {__version__}")
        raise typer.Exit()


def _storage() -> StorageManager:
    return StorageManager(LocalStore(config.storage_dir))


def _new_conversation_id() -> str:
    return f"conv_{int(time.time() * 1000)}"


def _preview(text: str, width: int = 70) -> str:
    text = " ".join(text.split())
    return text[:width] + "..." if len(text) > width else text


def _has_scenes(reply: str) -> bool:
    from .parsing import extract_scenes

    return bool(extract_scenes(reply))


def _read_reply(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"❌ Error reading {path}: {e}")
        raise typer.Exit(1)


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    )
) -> None:
    """History by People - history told through the people who lived it."""
    pass


# Visual generation


def _build_pipeline(use_style_reference: bool):
    from .pipeline import GenerationPipeline
    from .services import ImagenClient, VeoClient, VertexClient

    vertex = VertexClient()
    return GenerationPipeline(
        images=ImagenClient(vertex=vertex),
        videos=VeoClient(vertex=vertex),
        use_style_reference=use_style_reference,
    )


MediaLink = Callable[[Optional[str]], Optional[str]]


def _unchanged(uri: Optional[str]) -> Optional[str]:
    return uri


def _media_linker() -> MediaLink:
    """Return the function turning stored media references into display links.

    Signing problems only cost the signed link: the stored URI is shown
    instead and generation carries on.
    """
    if not config.sign_media_urls:
        return _unchanged

    from .services import MediaStore

    try:
        store = MediaStore()
    except Exception as e:
        logger.warning(f"Cannot sign media URLs, showing storage URIs: {e}")
        return _unchanged

    def link(uri: Optional[str]) -> Optional[str]:
        try:
            return store.public_url(uri)
        except Exception as e:
            logger.warning(f"Failed to sign {uri}: {e}")
            return uri

    return link


def _echo_result(result: GenerationResult, link: MediaLink = _unchanged) -> None:
    if result.status == SceneStatus.FAILED:
        typer.echo(f"   ❌ Scene {result.scene_number}: {result.title} - {result.error}")
        return

    typer.echo(f"   ✅ Scene {result.scene_number}: {result.title}")
    typer.echo(f"      🖼️  {link(result.image_url)}")
    if result.video_fallback:
        reason = "rate limited" if result.is_rate_limited else result.video_error
        typer.echo(f"      ⚠️  Still image only ({reason})")
    else:
        typer.echo(f"      🎞️  {link(result.video_url)}")


def _echo_events(events: Iterable[PipelineEvent]) -> bool:
    """Print a run's events. Returns False if the run ended with an error."""
    link = _media_linker()
    ok = True
    for event in events:
        _echo_event(event, link)
        if isinstance(event, ErrorEvent):
            ok = False
    return ok


def _echo_event(event: PipelineEvent, link: MediaLink = _unchanged) -> None:
    if isinstance(event, StatusEvent):
        typer.echo(f"\n⏳ {event.message}")
    elif isinstance(event, ProgressEvent):
        suffix = " (image only)" if event.rate_limited else ""
        typer.echo(f"   [{event.current_scene}/{event.total_scenes}] {event.title}{suffix}")
    elif isinstance(event, SceneCompleteEvent):
        _echo_result(event.scene, link)
    elif isinstance(event, CompleteEvent):
        typer.echo(f"\n✅ {event.message}")
        if event.rate_limited_count:
            typer.echo(f"   ⚠️  {event.rate_limited_count} scene(s) hit the video rate limit")
    elif isinstance(event, ErrorEvent):
        typer.echo(f"\n❌ {event.message}: {event.error}")


def _visualize_reply(
    storage: StorageManager,
    conversation_id: str,
    reply: str,
    history: Sequence[Message] = (),
    persona: Optional[str] = None,
    style_reference: bool = False,
    dry_run: bool = False,
) -> bool:
    """Parse a reply into scenes and generate their media.

    Returns:
        False if the reply has no scenes or the run ended with an error.
    """
    from .parsing import extract_scenes, resolve_persona_name
    from .pipeline import persist_progress, sanitize_prompt, video_prompt

    scenes = extract_scenes(reply)
    if not scenes:
        typer.echo("❌ No scenes found in reply")
        return False

    persona_name = persona or resolve_persona_name(reply, history)
    typer.echo(f"🎬 Visualizing {persona_name}'s story ({len(scenes)} scenes)")

    if dry_run:
        typer.echo(f"\n🔍 Dry run - would generate {len(scenes)} scenes:")
        for scene in scenes:
            typer.echo(f"   [{scene.scene_number}] {scene.title}")
            typer.echo(f"       🖼️  {_preview(sanitize_prompt(scene.visual_prompt, scene.title))}")
            typer.echo(f"       🎞️  {_preview(video_prompt(scene.context))}")
        return True

    try:
        config.validate_media_required()
        pipeline = _build_pipeline(style_reference)
    except ValueError as e:
        typer.echo(f"❌ Configuration error: {e}")
        return False

    events = persist_progress(
        pipeline.run(scenes, persona_name),
        storage,
        conversation_id,
        persona_name,
        scenes,
    )
    ok = _echo_events(events)

    typer.echo(f"\n📁 Saved as persona {PersonaRecord.make_id(conversation_id, persona_name)}")
    return ok


@app.command()
def chat(
    conversation: Optional[str] = typer.Option(
        None,
        "--conversation",
        "-c",
        help="Conversation ID to resume (defaults to the active one)"
    ),
    new: bool = typer.Option(
        False,
        "--new",
        "-n",
        help="Start a new conversation"
    ),
    generate: bool = typer.Option(
        True,
        "--generate/--no-generate",
        help="Offer to generate visuals when a reply contains scenes"
    ),
    style_reference: bool = typer.Option(
        False,
        "--style-reference",
        help="Use the first still as style reference for later scenes"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """Talk with the history curator."""
    from .agents import CuratorAgent, detect_phase

    setup_logging(verbose)

    try:
        config.validate_required()
        agent = CuratorAgent()
    except ValueError as e:
        typer.echo(f"❌ Configuration error: {e}")
        raise typer.Exit(1)

    storage = _storage()
    settings = storage.get_settings()
    if new:
        conversation_id = None
    elif conversation:
        conversation_id = conversation
    elif settings.auto_restore:
        conversation_id = storage.get_active_conversation_id()
    else:
        conversation_id = None
    record = storage.get_conversation(conversation_id) if conversation_id else None

    if conversation and record is None:
        typer.echo(f"❌ Conversation not found: {conversation}")
        raise typer.Exit(1)

    if record:
        messages = list(record.messages)
        phase = record.current_phase
        typer.echo(f"📜 Resuming: {record.title} ({len(messages)} messages)")
    else:
        conversation_id = _new_conversation_id()
        messages = []
        phase = Phase.CLARIFICATION
        typer.echo("🏛️  What moment in history would you like to explore?")

    typer.echo(f"   Using model: {agent.model}. Type 'exit' to leave.\n")

    while True:
        user_text = typer.prompt("You", prompt_suffix=" > ").strip()
        if user_text.lower() in EXIT_WORDS:
            break
        if not user_text:
            continue

        typer.echo("\nCurator > ", nl=False)
        try:
            chunks = []
            for delta in agent.reply(user_text, messages):
                chunks.append(delta)
                typer.echo(delta, nl=False)
            typer.echo("\n")
        except Exception as e:
            typer.echo(f"\n❌ Failed to generate response: {e}")
            continue

        reply = "".join(chunks)
        messages.append(Message(role=Role.USER, content=user_text))
        messages.append(Message(role=Role.ASSISTANT, content=reply))
        phase = detect_phase(reply, phase)
        if settings.auto_save:
            storage.save_conversation(conversation_id, messages, phase)

        if generate and _has_scenes(reply):
            if typer.confirm("🎬 Generate visuals for these scenes?", default=True):
                _visualize_reply(
                    storage,
                    conversation_id,
                    reply,
                    history=messages[:-1],
                    style_reference=style_reference,
                )

    if settings.auto_save:
        typer.echo(f"👋 Conversation saved: {conversation_id}")
    else:
        typer.echo("👋 Auto-save is off; conversation not saved")


@app.command()
def scenes(
    reply_file: Path = typer.Argument(
        ...,
        help="File holding a curator reply",
        exists=True,
        file_okay=True,
        dir_okay=False
    ),
) -> None:
    """Show the scenes and persona parsed from a saved reply."""
    from .parsing import extract_scenes, resolve_persona_name

    reply = _read_reply(reply_file)
    found = extract_scenes(reply)
    if not found:
        typer.echo("❌ No scenes found")
        raise typer.Exit(1)

    typer.echo(f"👤 Persona: {resolve_persona_name(reply)}")
    typer.echo(f"\n📽️  Scenes: {len(found)}")
    for scene in found:
        typer.echo(f"   • Scene {scene.scene_number}: {scene.title}")
        typer.echo(f"     {_preview(scene.visual_prompt)}")


@app.command()
def visualize(
    reply_file: Path = typer.Argument(
        ...,
        help="File holding a curator reply with scenes",
        exists=True,
        file_okay=True,
        dir_okay=False
    ),
    conversation: Optional[str] = typer.Option(
        None,
        "--conversation",
        "-c",
        help="Conversation the persona belongs to (a new ID if omitted)"
    ),
    persona: Optional[str] = typer.Option(
        None,
        "--persona",
        "-p",
        help="Persona name (inferred from the reply if omitted)"
    ),
    style_reference: bool = typer.Option(
        False,
        "--style-reference",
        help="Use the first still as style reference for later scenes"
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be generated without calling the API"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """Generate stills and clips for the scenes in a saved reply."""
    setup_logging(verbose)
    storage = _storage()

    history: list[Message] = []
    if conversation:
        record = storage.get_conversation(conversation)
        if record:
            history = record.messages

    ok = _visualize_reply(
        storage,
        conversation or _new_conversation_id(),
        _read_reply(reply_file),
        history=history,
        persona=persona,
        style_reference=style_reference,
        dry_run=dry_run,
    )
    if not ok:
        raise typer.Exit(1)


@app.command()
def regenerate(
    persona_id: str = typer.Argument(..., help="Persona ID"),
    all_scenes: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Regenerate every scene, not only failed or expired ones"
    ),
    style_reference: bool = typer.Option(
        False,
        "--style-reference",
        help="Use the first new still as style reference for later scenes"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """Generate again the failed or expired scenes of a persona."""
    from .pipeline import persist_regeneration

    setup_logging(verbose)
    storage = _storage()
    record = storage.get_persona(persona_id)
    if record is None:
        typer.echo(f"❌ Persona not found: {persona_id}")
        raise typer.Exit(1)

    selected = [
        Scene.model_validate(result.model_dump(include=set(Scene.model_fields)))
        for result in record.scenes
        if all_scenes or result.status == SceneStatus.FAILED or not result.is_media_valid()
    ]
    if not selected:
        typer.echo(f"✅ Every scene of {record.persona_name} has live media")
        return

    typer.echo(
        f"🔁 Regenerating {len(selected)} of {len(record.scenes)} scenes "
        f"for {record.persona_name}"
    )
    try:
        config.validate_media_required()
        pipeline = _build_pipeline(style_reference)
    except ValueError as e:
        typer.echo(f"❌ Configuration error: {e}")
        raise typer.Exit(1)

    events = persist_regeneration(
        pipeline.run(selected, record.persona_name),
        storage,
        record,
        selected,
    )
    if not _echo_events(events):
        raise typer.Exit(1)


@app.command()
def narrate(
    persona_id: str = typer.Argument(..., help="Persona ID"),
    scene_number: int = typer.Argument(..., help="Scene number"),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="WAV file to write (defaults to the workspace media directory)"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """Narrate a scene's historical context in the persona's voice."""
    from .services import GenerationServiceError, SpeechClient

    setup_logging(verbose)
    record = _storage().get_persona(persona_id)
    if record is None:
        typer.echo(f"❌ Persona not found: {persona_id}")
        raise typer.Exit(1)

    scene = record.scene(scene_number)
    if scene is None:
        typer.echo(f"❌ Scene {scene_number} not found for {record.persona_name}")
        raise typer.Exit(1)
    if not scene.context.strip():
        typer.echo(f"❌ Scene {scene_number} has no context to narrate")
        raise typer.Exit(1)

    try:
        audio = SpeechClient().synthesize(scene.context, record.persona_name)
    except ValueError as e:
        typer.echo(f"❌ Configuration error: {e}")
        raise typer.Exit(1)
    except GenerationServiceError as e:
        typer.echo(f"❌ Narration failed: {e}")
        raise typer.Exit(1)

    target = output or config.media_dir / f"{persona_id}_scene_{scene_number}.wav"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(audio)
    typer.echo(f"🔊 Narration of Scene {scene_number}: {scene.title} → {target}")


# Stored data


@app.command()
def history() -> None:
    """List saved conversations, most recent first."""
    storage = _storage()
    conversations = storage.get_conversations()
    if not conversations:
        typer.echo("No saved conversations")
        return

    active = storage.get_active_conversation_id()
    typer.echo(f"📚 Conversations: {len(conversations)}")
    for c in conversations:
        marker = "▶" if c.id == active else " "
        personas = len(storage.get_personas_by_conversation(c.id))
        typer.echo(f" {marker} {c.id}  {c.title}")
        typer.echo(
            f"     {c.current_phase.value} · {len(c.messages)} messages · {personas} personas · "
            f"{c.last_modified:%Y-%m-%d %H:%M}"
        )


@app.command()
def show(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
) -> None:
    """Print a saved conversation."""
    record = _storage().get_conversation(conversation_id)
    if record is None:
        typer.echo(f"❌ Conversation not found: {conversation_id}")
        raise typer.Exit(1)

    typer.echo(f"📜 {record.title} ({record.current_phase.value})\n")
    for message in record.messages:
        speaker = "You" if message.role == Role.USER else "Curator"
        typer.echo(f"{speaker} > {message.content}\n")


@app.command()
def delete(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
) -> None:
    """Delete a conversation and its personas."""
    if not _storage().delete_conversation(conversation_id):
        typer.echo(f"❌ Conversation not found: {conversation_id}")
        raise typer.Exit(1)
    typer.echo(f"🗑️  Deleted conversation {conversation_id}")


@app.command()
def personas(
    conversation: Optional[str] = typer.Option(
        None,
        "--conversation",
        "-c",
        help="Only personas of this conversation"
    ),
) -> None:
    """List persona visual stories and the state of their media."""
    storage = _storage()
    records = (
        storage.get_personas_by_conversation(conversation)
        if conversation else storage.get_personas()
    )
    if not records:
        typer.echo("No saved personas")
        return

    for p in records:
        valid = sum(1 for s in p.scenes if s.is_media_valid())
        typer.echo(f"👤 {p.persona_name}  [{p.id}]")
        typer.echo(
            f"   {p.metadata.status.value} · {p.metadata.total_scenes} scenes · "
            f"{valid} with live media · {p.metadata.rate_limited_scenes} rate limited"
        )
        for scene in p.scenes:
            icon = "✅" if scene.is_media_valid() else ("❌" if scene.status == SceneStatus.FAILED else "⌛")
            typer.echo(f"     {icon} {scene.scene_number}. {scene.title}")


@app.command("delete-persona")
def delete_persona(
    persona_id: str = typer.Argument(..., help="Persona ID"),
) -> None:
    """Delete one persona visual story."""
    if not _storage().delete_persona(persona_id):
        typer.echo(f"❌ Persona not found: {persona_id}")
        raise typer.Exit(1)
    typer.echo(f"🗑️  Deleted persona {persona_id}")


@app.command()
def download(
    persona_id: str = typer.Argument(..., help="Persona ID"),
    output: Path = typer.Option(
        Path("./media"),
        "--output",
        "-o",
        help="Directory for downloaded media"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """Download a persona's stills and clips from Cloud Storage."""
    from .services import MediaStore

    setup_logging(verbose)
    record = _storage().get_persona(persona_id)
    if record is None:
        typer.echo(f"❌ Persona not found: {persona_id}")
        raise typer.Exit(1)

    try:
        store = MediaStore()
    except Exception as e:
        typer.echo(f"❌ Failed to initialize Cloud Storage client: {e}")
        raise typer.Exit(1)

    failed = 0
    for scene in record.scenes:
        uris = {"image": scene.image_url}
        if not scene.video_fallback:
            uris["video"] = scene.video_url

        for kind, uri in uris.items():
            if not uri:
                continue
            if not uri.startswith("gs://"):
                typer.echo(f"   • Scene {scene.scene_number} {kind}: already local at {uri}")
                continue

            target = output / persona_id / f"scene_{scene.scene_number}_{kind}{Path(uri).suffix}"
            try:
                store.download(uri, target)
                typer.echo(f"   ✅ Scene {scene.scene_number} {kind} → {target}")
            except Exception as e:
                failed += 1
                typer.echo(f"   ❌ Scene {scene.scene_number} {kind}: {e}")

    if failed:
        raise typer.Exit(1)


@app.command("export")
def export_data(
    path: Path = typer.Argument(..., help="Destination JSON file"),
) -> None:
    """Export all conversations, personas, and settings."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_storage().export_data(), encoding="utf-8")
    except OSError as e:
        typer.echo(f"❌ Error exporting data: {e}")
        raise typer.Exit(1)
    typer.echo(f"✅ Exported to {path}")


@app.command("import")
def import_data(
    path: Path = typer.Argument(
        ...,
        help="JSON file produced by export",
        exists=True,
        file_okay=True,
        dir_okay=False
    ),
) -> None:
    """Import data from an export file, replacing what it contains."""
    try:
        _storage().import_data(path.read_text(encoding="utf-8"))
    except ValueError as e:
        typer.echo(f"❌ Invalid export file: {e}")
        raise typer.Exit(1)
    typer.echo(f"✅ Imported {path}")


@app.command()
def stats() -> None:
    """Show storage statistics."""
    for name, value in _storage().get_storage_stats().items():
        typer.echo(f"   {name.replace('_', ' ').capitalize()}: {value}")


@app.command("settings")
def settings_command(
    auto_save: Optional[bool] = typer.Option(
        None,
        "--auto-save/--no-auto-save",
        help="Save the transcript after every chat turn"
    ),
    auto_restore: Optional[bool] = typer.Option(
        None,
        "--auto-restore/--no-auto-restore",
        help="Resume the active conversation when chat starts"
    ),
    max_conversations: Optional[int] = typer.Option(
        None,
        "--max-conversations",
        min=1,
        help="Stored conversation cap"
    ),
    max_personas: Optional[int] = typer.Option(
        None,
        "--max-personas",
        min=1,
        help="Stored persona cap"
    ),
) -> None:
    """Show or change stored preferences."""
    storage = _storage()
    requested = {
        "auto_save": auto_save,
        "auto_restore": auto_restore,
        "max_conversations": max_conversations,
        "max_personas": max_personas,
    }
    changes = {name: value for name, value in requested.items() if value is not None}

    if changes:
        current = storage.save_settings(**changes)
        typer.echo("✅ Settings updated")
    else:
        current = storage.get_settings()

    for name, value in current.model_dump().items():
        typer.echo(f"   {name}: {value}")


@app.command()
def clear(
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation"
    ),
) -> None:
    """Delete all stored data."""
    if not yes and not typer.confirm("Delete all conversations and personas?"):
        raise typer.Exit(1)
    _storage().clear_all_data()
    typer.echo("🗑️  All data cleared")


if __name__ == "__main__":
    app()
