"""
Command surface for the player.

    musicplayer --dir ~/Music        interactive shell over a directory
    musicplayer --how-to             command reference
    musicplayer play song.flac       play one file and exit when it ends
    musicplayer list ~/Music         print the playable files of a directory
    musicplayer devices              print the available output devices
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from app.library import Library
from engine.errors import (
    AudioOutputError,
    DecodeError,
    InvalidVolumeError,
    NoAudioTracksError,
    PlayerError,
    TrackNotFoundError,
)
from engine.player_state import PlayerState, TransportState
from engine.sink import OutputDevice
from engine.transport import TransportCoordinator, create_transport
from engine.tuning import PlayerTuning, load_player_tuning
from log.log_manager import get_logger, setup_logging

console = Console(highlight=False)
logger = get_logger("cli")

VERSION = "0.1.0"

# Most specific first: TrackNotFoundError is also an OSError.
ERROR_MESSAGES: list[tuple[type, str]] = [
    (TrackNotFoundError, "Track file is missing or unreadable"),
    (NoAudioTracksError, "File contains no audio tracks"),
    (DecodeError, "Could not decode the track"),
    (AudioOutputError, "Audio output is unavailable"),
    (InvalidVolumeError, "Volume must be 0.0 to 1.0"),
]

STATE_STYLES = {
    TransportState.PLAYING: ("Playing", "green"),
    TransportState.PAUSED: ("Paused", "yellow"),
    TransportState.IDLE: ("Stopped", "red"),
}


def describe_error(err: PlayerError) -> str:
    for cls, text in ERROR_MESSAGES:
        if isinstance(err, cls):
            return f"{text} ({err})"
    return str(err)


def print_error(message: str) -> None:
    console.print(f"[red]Error[/red]: {escape(message)}")


def build_transport(tuning: Optional[PlayerTuning] = None) -> TransportCoordinator:
    tuning = tuning or load_player_tuning()
    player = PlayerState(OutputDevice(tuning), default_volume=tuning.default_volume)
    return create_transport(player)


def print_usage_instructions() -> None:
    console.print("\n[bold]Music Player Usage Instructions:[/bold]")
    console.print("[bold]--------------------------------[/bold]")
    console.print("[bold]Commands[/bold]:")
    console.print("  [green]play[/green] <number>   - Play the track with the given number")
    console.print("  [yellow]pause[/yellow]           - Pause the current track")
    console.print("  [green]resume[/green]          - Resume the paused track")
    console.print("  [red]stop[/red]            - Stop the current playback")
    console.print("  [cyan]volume[/cyan] <0.0-1.0> - Set playback volume")
    console.print("  [blue]status[/blue]          - Show player status")
    console.print("  [cyan]list[/cyan]            - Show available tracks")
    console.print("  [yellow]help[/yellow]            - Show this help message")
    console.print("  [red]exit[/red]            - Exit the program")
    console.print("\n[bold]Example[/bold]:")
    console.print("  musicplayer --dir /path/to/music/directory\n")


def print_library(library: Library, current: Optional[Path] = None) -> None:
    table = Table(title="Available Songs", title_style="bold green", header_style="bold")
    table.add_column("Index", style="cyan", no_wrap=True)
    table.add_column("Filename")
    table.add_column("", style="green")
    current_index = library.index_of(current)
    for index, path in library:
        if index == current_index:
            table.add_row(f"[green]{index}[/green]", f"[green]{escape(path.name)}[/green]", "▶")
        else:
            table.add_row(str(index), escape(path.name), "")
    console.print(table)


class PlayerShell:
    """Interactive command loop over one directory of tracks."""

    def __init__(self, transport: TransportCoordinator, library: Library) -> None:
        self.transport = transport
        self.library = library
        self._handlers: dict[str, Callable[[Optional[str]], bool]] = {
            "play": self._play,
            "pause": self._pause,
            "resume": self._resume,
            "stop": self._stop,
            "volume": self._volume,
            "status": self._status,
            "list": self._list,
            "help": self._help,
            "exit": self._exit,
        }

    def run(self) -> None:
        console.print("\n[bold green]Welcome to Music Player![/bold green]")
        console.print(f"Loaded directory: [blue]{escape(str(self.library.directory))}[/blue]")
        console.print(f"Found [yellow]{len(self.library)}[/yellow] songs.\n")
        print_library(self.library, self.transport.player.current_track)
        try:
            while True:
                try:
                    line = console.input("[bold cyan]musicplayer> [/bold cyan]")
                except EOFError:
                    break
                if not self.handle(line):
                    break
        except KeyboardInterrupt:
            console.print("\n[blue]Info[/blue]: Exiting...")
        finally:
            self.transport.stop()

    def handle(self, line: str) -> bool:
        """Run one command line. Returns False when the shell should exit."""
        tokens = line.split()
        if not tokens:
            return True
        command = tokens[0].lower()
        arg = tokens[1] if len(tokens) > 1 else None
        handler = self._handlers.get(command)
        if handler is None:
            console.print("[bold red]Error[/bold red]: Invalid command - type 'help' for instructions")
            return True
        try:
            return handler(arg)
        except PlayerError as e:
            logger.info("command %r failed: %s", line, e)
            print_error(describe_error(e))
            return True

    def _play(self, arg: Optional[str]) -> bool:
        if arg is None:
            print_error("Please provide a song index")
            return True
        try:
            index = int(arg)
        except ValueError:
            print_error("Invalid song index")
            return True
        path = self.library.get(index)
        if path is None:
            print_error("Invalid song index")
            return True
        self.transport.play(path)
        console.print(f"[bold green]Now playing[/bold green]: Playing [blue]{escape(path.name)}[/blue]")
        return True

    def _pause(self, arg: Optional[str]) -> bool:
        if self.transport.status().state is TransportState.PLAYING:
            self.transport.pause()
            console.print("[yellow]Info[/yellow]: Playback paused")
        return True

    def _resume(self, arg: Optional[str]) -> bool:
        if self.transport.status().state is TransportState.PAUSED:
            self.transport.resume()
            console.print("[green]Info[/green]: Playback resumed")
        return True

    def _stop(self, arg: Optional[str]) -> bool:
        was_active = self.transport.status().state is not TransportState.IDLE
        self.transport.stop()
        if was_active:
            console.print("[red]Info[/red]: Playback stopped")
        return True

    def _volume(self, arg: Optional[str]) -> bool:
        if arg is None:
            print_error("Missing volume value")
            return True
        try:
            level = float(arg)
        except ValueError:
            print_error("Invalid volume value")
            return True
        self.transport.set_volume(level)
        console.print(f"[green]Success[/green]: Volume set to {level:.1f}")
        return True

    def _status(self, arg: Optional[str]) -> bool:
        status = self.transport.status()
        console.print("\n[bold]Player Status:[/bold]")
        console.print("[bold]--------------[/bold]")
        if status.track is not None:
            label, style = STATE_STYLES[status.state]
            console.print(f"  [bold]Song[/bold]: [blue]{escape(status.track.name)}[/blue]")
            console.print(f"  [bold]State[/bold]: [{style}]{label}[/{style}]")
            console.print(f"  [bold]Elapsed[/bold]: [cyan]{int(status.elapsed_seconds)}[/cyan] seconds")
            if status.duration_seconds is not None:
                console.print(f"  [bold]Length[/bold]: [cyan]{int(status.duration_seconds)}[/cyan] seconds")
        else:
            console.print("  [bold]Song[/bold]: No song playing")
        console.print(f"  [bold]Volume[/bold]: {status.volume:.1f}")
        return True

    def _list(self, arg: Optional[str]) -> bool:
        print_library(self.library, self.transport.player.current_track)
        return True

    def _help(self, arg: Optional[str]) -> bool:
        print_usage_instructions()
        return True

    def _exit(self, arg: Optional[str]) -> bool:
        return False


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="musicplayer")
@click.option("-d", "--dir", "music_dir", type=click.Path(file_okay=False, path_type=Path),
              help="Sets the music directory")
@click.option("--how-to", is_flag=True, help="Shows operation commands and how to use the application.")
@click.pass_context
def cli(ctx: click.Context, music_dir: Optional[Path], how_to: bool) -> None:
    """Command-line music player"""
    if ctx.invoked_subcommand is not None:
        return
    if how_to:
        print_usage_instructions()
        return
    if music_dir is None:
        raise click.UsageError("Missing option '-d' / '--dir' (or use --how-to)")

    try:
        library = Library.load(music_dir)
    except OSError as e:
        print_error(str(e))
        ctx.exit(1)
    PlayerShell(build_transport(), library).run()


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--volume", type=float, default=None, help="Initial volume (0.0-1.0)")
def play(path: Path, volume: Optional[float]) -> None:
    """Play one file and return when it ends."""
    if volume is not None and not 0.0 <= volume <= 1.0:
        print_error(describe_error(InvalidVolumeError(volume)))
        raise SystemExit(1)

    transport = build_transport()
    try:
        console.print(f"[bold green]Now playing[/bold green]: [blue]{escape(path.name)}[/blue]")
        transport.play(path, volume, wait=True)
    except PlayerError as e:
        print_error(describe_error(e))
        raise SystemExit(1)
    except KeyboardInterrupt:
        console.print("\n[blue]Info[/blue]: Exiting...")
    finally:
        transport.stop()


@cli.command(name="list")
@click.argument("directory", type=click.Path(path_type=Path))
def list_tracks(directory: Path) -> None:
    """List the playable files of a directory."""
    try:
        library = Library.load(directory)
    except OSError as e:
        print_error(str(e))
        raise SystemExit(1)
    if not len(library):
        console.print("[yellow]No playable files found.[/yellow]")
        return
    print_library(library)


@cli.command()
def devices() -> None:
    """List audio output devices."""
    device = OutputDevice(load_player_tuning())
    try:
        found = device.list_devices()
    except AudioOutputError as e:
        print_error(describe_error(e))
        raise SystemExit(1)
    table = Table(title="Output Devices", header_style="bold")
    table.add_column("Index", style="cyan")
    table.add_column("Name")
    table.add_column("Channels", style="magenta")
    for d in found:
        table.add_row(str(d.get("index", "")), str(d.get("name", "")), str(d.get("max_output_channels", "")))
    console.print(table)


def main() -> int:
    setup_logging()
    cli(prog_name="musicplayer")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
