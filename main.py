# -- coding: utf-8 --

import argparse
import logging
import time

from core.config import ConfigError, load_config, validate_config
from core.errors import RoastMonitorError
from core.roast import parse_roast_level
from core.runtime import build_runtime_from_loaded_config
from store import detection_stats, export_records_csv, query_records
from store.selectors import SORT_KEYS
from utils.timestamps import format_elapsed

_BOOL_WORDS = {
    "true": True,
    "yes": True,
    "on": True,
    "1": True,
    "false": False,
    "no": False,
    "off": False,
    "0": False,
}


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Roast monitor: coffee roast detection and session tracking",
    )
    p.add_argument(
        "--config-dir", default="config", help="Directory containing main_*.yaml"
    )
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    sub = p.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="Estimate the roast level of an image")
    detect.add_argument("image")
    detect.add_argument(
        "--save", action="store_true", help="Save a record even if auto_save is off"
    )

    history = sub.add_parser("history", help="List detection records")
    history.add_argument("--search", default="")
    history.add_argument("--label", default="")
    history.add_argument("--sort", default="newest", choices=SORT_KEYS)
    history.add_argument(
        "--export", dest="export_path", default="", help="Write the listed records to CSV"
    )

    remove = sub.add_parser("remove", help="Delete one detection record")
    remove.add_argument("record_id")

    sub.add_parser("clear", help="Clear local detection history")

    monitor = sub.add_parser("monitor", help="Run a monitoring session")
    monitor.add_argument("--name", required=True)
    monitor.add_argument("--target", type=float, default=None)
    monitor.add_argument("--label", default="")
    monitor.add_argument(
        "--duration", type=float, default=None, help="Stop after N seconds"
    )

    sub.add_parser("sessions", help="List monitoring sessions")

    for name in ("login", "signup"):
        auth = sub.add_parser(name)
        auth.add_argument("email")
        auth.add_argument("password")
    sub.add_parser("logout")

    settings = sub.add_parser("settings", help="Show or change settings")
    settings.add_argument("assignments", nargs="*", metavar="KEY=VALUE")
    settings.add_argument("--reset", action="store_true")
    settings.add_argument("--export", dest="export_path", default="")
    settings.add_argument("--import", dest="import_path", default="")
    return p.parse_args(argv)


def setup_logging(verbose: bool, log_level: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # Use UTC for all %(asctime)s timestamps in logs.
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        level=level, format="%(asctime)sZ [%(levelname)s] %(message)s", force=True
    )
    if not verbose:
        # Silence noisy third-party info logs (aiohttp access/client chatter).
        for name in ("aiohttp", "aiohttp.access", "aiohttp.client"):
            logging.getLogger(name).setLevel(logging.WARNING)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_level)
    try:
        cfg = load_config(args.config_dir)
        validate_config(cfg)
    except ConfigError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e
    # Config-driven log level (unless overridden by CLI).
    if not args.verbose and not args.log_level:
        setup_logging(args.verbose, cfg.runtime.log_level)

    logging.debug(
        "Config files: main=%s detect=%s gateway=%s camera=%s detect_impl=%s",
        cfg.paths.get("main"),
        cfg.paths.get("detect"),
        cfg.gateway.type,
        cfg.camera.type,
        cfg.detect.impl,
    )

    handler = _COMMANDS[args.command]
    try:
        with build_runtime_from_loaded_config(cfg) as runtime:
            return handler(runtime, args, cfg)
    except RoastMonitorError as e:
        logging.error("%s failed: %s", args.command, e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        logging.info("Interrupted by user (Ctrl+C)")


def _cmd_detect(runtime, args, _cfg):
    estimate = runtime.estimate_image(args.image)
    level = estimate.roast_label
    print(f"roast index : {estimate.roast_index:.1f}")
    print(f"roast level : {level.value} ({level.english})")
    print(f"confidence  : {estimate.confidence:.0%}")
    print(f"advisory    : {estimate.advisory}")
    if args.save or runtime.store.settings.auto_save:
        record = runtime.save_detection(args.image, estimate).unwrap()
        print(f"saved as {record.id}")


def _cmd_history(runtime, args, _cfg):
    records = query_records(
        runtime.store.detection_records,
        search=args.search,
        label=args.label or None,
        sort=args.sort,
    )
    for r in records:
        print(
            f"{r.id}  {r.created_at:%Y-%m-%d %H:%M}  {r.roast_index:5.1f}  "
            f"{r.roast_label.value:<4} {r.confidence:.0%}  {r.image_ref}"
        )
    stats = detection_stats(runtime.store.detection_records)
    common = stats.most_common_label.value if stats.most_common_label else "-"
    print(
        f"total={stats.total} avg_index={stats.average_index} "
        f"most_common={common} avg_confidence={stats.average_confidence}"
    )
    if args.export_path:
        count = export_records_csv(records, args.export_path)
        print(f"exported {count} records to {args.export_path}")


def _cmd_remove(runtime, args, _cfg):
    runtime.call(runtime.store.remove_detection_record(args.record_id)).unwrap()
    print(f"removed {args.record_id}")


def _cmd_clear(runtime, _args, _cfg):
    count = runtime.store.clear_detection_records().unwrap()
    print(f"cleared {count} local records")


def _cmd_monitor(runtime, args, cfg):
    target = (
        float(args.target)
        if args.target is not None
        else float(cfg.monitor.default_target_index)
    )
    label = (
        parse_roast_level(args.label)
        if args.label
        else runtime.store.settings.default_roast_label
    )

    def on_sample(sample):
        snap = sample.snapshot
        flag = "  <- near target" if sample.near_target else ""
        temp = f" {snap.temperature:.0f}C" if snap.temperature is not None else ""
        print(
            f"[{format_elapsed(runtime.engine.elapsed_s)}] "
            f"{snap.roast_index:5.1f} {snap.roast_label.value} "
            f"{snap.confidence:.0%}{temp}{flag}",
            flush=True,
        )

    report = runtime.run_monitor(
        args.name, target, label, duration_s=args.duration, on_sample=on_sample
    )
    if report is not None:
        print(
            f"session {report.session_id} completed: "
            f"{report.snapshot_count} snapshots in {format_elapsed(report.elapsed_s)}"
        )


def _cmd_sessions(runtime, _args, _cfg):
    for s in runtime.store.monitor_sessions:
        end = f"{s.end_time:%H:%M}" if s.end_time else "--:--"
        print(
            f"{s.id}  {s.start_time:%Y-%m-%d %H:%M}-{end}  {s.status.value:<9} "
            f"target={s.target_roast_index:.0f} {s.target_roast_label.value}  "
            f"snapshots={len(s.snapshots)}  {s.name}"
        )


def _cmd_login(runtime, args, _cfg):
    identity = runtime.call(runtime.store.sign_in(args.email, args.password)).unwrap()
    print(f"signed in as {identity.email}")


def _cmd_signup(runtime, args, _cfg):
    identity = runtime.call(runtime.store.sign_up(args.email, args.password)).unwrap()
    if identity is None:
        print("account created; confirm your email, then log in")
    else:
        print(f"signed up and signed in as {identity.email}")


def _cmd_logout(runtime, _args, _cfg):
    runtime.call(runtime.store.logout())
    print("signed out")


def _parse_assignment(text: str):
    key, sep, raw = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"expected KEY=VALUE, got {text!r}")
    value = raw.strip()
    if key in ("auto_save", "notifications"):
        if value.lower() not in _BOOL_WORDS:
            raise ValueError(f"{key} must be true or false")
        return key, _BOOL_WORDS[value.lower()]
    return key, value


def _cmd_settings(runtime, args, _cfg):
    store = runtime.store
    if args.reset:
        store.reset_settings()
    if args.import_path:
        store.import_settings(args.import_path)
    if args.assignments:
        try:
            updates = dict(_parse_assignment(a) for a in args.assignments)
        except ValueError as e:
            logging.error("settings: %s", e)
            raise SystemExit(2) from e
        store.update_settings(**updates)
    if args.export_path:
        print(f"exported to {store.export_settings(args.export_path)}")
    for key, value in store.settings.to_dict().items():
        print(f"{key} = {value}")


_COMMANDS = {
    "detect": _cmd_detect,
    "history": _cmd_history,
    "remove": _cmd_remove,
    "clear": _cmd_clear,
    "monitor": _cmd_monitor,
    "sessions": _cmd_sessions,
    "login": _cmd_login,
    "signup": _cmd_signup,
    "logout": _cmd_logout,
    "settings": _cmd_settings,
}


if __name__ == "__main__":
    main()
