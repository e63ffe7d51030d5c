"""
qrsnap - save one snapshot per distinct QR code found in a video.

Architecture:
    Refresh ticks → SamplingLoop → Decoder → DedupState
                                     ↓ (new value)
                         CaptureValidator (worker threads)
                                     ↓ (re-decoded OK)
                      CaptureCollection + output directory
"""

import argparse
import logging
import time

from tqdm import tqdm

from .capture import ARCHIVE_NAME, DirectorySink
from .config import load_config, scanner_config_from_dict
from .qr_decoder import BACKENDS, QRDecoder
from .sampling_loop import TickResult, refresh_ticks
from .session import ScanSession
from .video import VideoFileSource


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Save one snapshot per distinct QR code in a video"
    )
    parser.add_argument("video", help="Video file to scan")
    parser.add_argument("--config", default=None, help="Path to config TOML")
    parser.add_argument("--out-dir", default=None, help="Directory for snapshots")
    parser.add_argument(
        "--archive",
        nargs="?",
        const="",
        default=None,
        help=f"Also write a zip of all snapshots (default name {ARCHIVE_NAME})",
    )
    parser.add_argument("--backend", choices=BACKENDS, default=None)
    parser.add_argument(
        "--cooldown", type=float, default=None, help="Cooldown per value in seconds"
    )
    parser.add_argument(
        "--no-deliver",
        action="store_true",
        help="Do not write individual snapshots (use with --archive)",
    )
    parser.add_argument("--preview", action="store_true", help="Show preview window")
    parser.add_argument(
        "--realtime", action="store_true", help="Play at normal speed"
    )
    parser.add_argument("--loglevel", default="INFO")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main application entry point."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=args.loglevel.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log = logging.getLogger("cli")

    raw = load_config(args.config) if args.config else {}
    cfg = scanner_config_from_dict(
        raw,
        backend=args.backend,
        cooldown_seconds=args.cooldown,
        out_dir=args.out_dir,
        realtime=True if args.realtime else None,
        show_preview=True if args.preview else None,
        deliver=False if args.no_deliver else None,
    )
    archive = cfg.archive
    if args.archive is not None:
        archive = cfg.out_dir / ARCHIVE_NAME if args.archive == "" else args.archive

    realtime = cfg.realtime or cfg.show_preview
    source = VideoFileSource(args.video, realtime=realtime)
    decoder = QRDecoder(backend=cfg.backend)
    session = ScanSession(
        source,
        decoder,
        cooldown=cfg.cooldown_seconds,
        sink=DirectorySink(cfg.out_dir) if cfg.deliver else None,
        clock=time.monotonic if realtime else source.position,
        validate_workers=cfg.validate_workers,
    )
    if not session.on_stream_ready():
        source.release()
        return 1

    preview = None
    if cfg.show_preview:
        from .preview import PreviewWindow

        preview = PreviewWindow(on_toggle_pause=source.toggle_pause)

    progress = tqdm(
        total=max(source.frame_count, 0) or None,
        unit="frame",
        disable=preview is not None,
    )

    def on_tick(result: TickResult) -> bool:
        if result is not TickResult.IDLE:
            progress.update(1)
        if preview is not None and not preview.render(
            source.current_frame,
            session.loop.last_detection,
            result,
            len(session.collection),
            source.paused,
        ):
            return False
        return not source.ended

    interrupted = False
    try:
        session.loop.run(
            refresh_ticks(cfg.refresh_hz, throttle=realtime), on_tick=on_tick
        )
    except KeyboardInterrupt:
        interrupted = True
        log.warning("interrupted, dropping pending validations")
    finally:
        progress.close()
        session.close(cancel_pending=interrupted)
        source.release()
        if preview is not None:
            preview.close()

    if archive:
        session.write_archive(archive)
    log.info("%d snapshot(s) saved", len(session.collection))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
