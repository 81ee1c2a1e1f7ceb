# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

TRIGGER_KINDS = ("interval", "cron", "date", "daily_time")


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # apscheduler BaseTrigger
    module: str
    kwargs: dict[str, Any]
    timeout_sec: int | None
    dry_run: bool
    max_instances: int
    coalesce: bool
    misfire_grace_time: int | None
    summary: str | None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> return immediately; an in-flight scrape finishes on its own.
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()

    def join(self, timeout: float | None = None) -> bool:
        """True if stopped before timeout."""
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load configuration, build an APScheduler instance, add jobs, and start.

    APScheduler 3.x wants a pytz scheduler timezone; triggers get the same
    tz unless their block names another one.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _resolve_timezone(cfg)

    # One scrape at a time per job; missed fires collapse into one.
    job_defaults = {"coalesce": True, "max_instances": 1}
    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=job_defaults,
        executors={"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 4))},
        jobstores={"default": MemoryJobStore()},
    )

    for raw in cfg.get("jobs", []):
        try:
            spec = _make_job_spec(raw, default_job_defaults=job_defaults, tz=tz)
        except ValueError:
            LOG.exception("Skipping job due to config error: %r", raw)
            continue
        _add_job(scheduler, spec)

    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


# ---- Helpers ----------------------------------------------------------------


def preview_trigger(trigger: Any, tz: Any, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Next `count` fire times after `start` (default: now in tz), for logs and list-jobs.
    """
    now = start or datetime.now(tz=tz)
    prev = now
    out: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return out


def _resolve_timezone(cfg: dict[str, Any]) -> Any:
    """config['timezone'] -> env TZ -> UTC, as a pytz timezone."""
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (unknown tz %r)", tz_name)
        return pytz.UTC


def _make_job_spec(raw: dict[str, Any], default_job_defaults: dict[str, Any], tz: Any) -> JobSpec:
    """
    Convert a raw config job dict into a JobSpec. The trigger may sit under
    "trigger" or directly on the job.
    """
    module = _require(raw, "module")
    jid = str(raw.get("id") or raw.get("name") or module)
    trig_def = raw.get("trigger") if isinstance(raw.get("trigger"), dict) else {
        k: raw[k] for k in TRIGGER_KINDS if k in raw
    }

    return JobSpec(
        id=jid,
        trigger=_build_trigger(trig_def, tz),
        module=module,
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        dry_run=bool(raw.get("dry_run", False)),
        max_instances=_int_or(raw.get("max_instances"), default_job_defaults.get("max_instances", 1)) or 1,
        coalesce=bool(raw.get("coalesce", default_job_defaults.get("coalesce", True))),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary") or raw.get("description"),
    )


def _as_tz(z: Any) -> Any:
    if not z:
        return None
    if isinstance(z, str):
        try:
            return pytz.timezone(z)
        except pytz.UnknownTimeZoneError as e:
            raise ValueError(f"unknown timezone {z!r}") from e
    return z


def _localize(dt: datetime, tzinfo: Any) -> datetime:
    if dt.tzinfo is not None:
        return dt
    if hasattr(tzinfo, "localize"):
        return tzinfo.localize(dt)
    return dt.replace(tzinfo=tzinfo or timezone.utc)


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from a dict.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     {second?, minute?, hour?, day?, day_of_week?, month?, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     "*/15 * * * *"}
      {"date":     {"run_at": ISO|epoch|datetime, timezone?}} or {"date": ISO|epoch}
      {"daily_time": {"time": "HH:MM[:SS]" | [...], "day_of_week"?, "timezone"?}}

    A block's own 'timezone' wins over the scheduler tz; a naive date.run_at
    is read in the scheduler tz. Raises ValueError on anything else.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    present = [k for k in TRIGGER_KINDS if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError(f"exactly one of {TRIGGER_KINDS} must be provided")
    kind = present[0]
    default_tz = _as_tz(tz)

    builders = {
        "interval": _interval_trigger,
        "cron": _cron_trigger,
        "date": _date_trigger,
        "daily_time": _daily_time_trigger,
    }
    return builders[kind](trig_def[kind], default_tz)


def _interval_trigger(spec: Any, default_tz: Any) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")
    units = ("weeks", "days", "hours", "minutes", "seconds")
    unknown = set(spec) - {*units, "jitter", "timezone", "start_date", "end_date"}
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

    def _non_negative(name: str) -> int:
        try:
            v = int(spec.get(name, 0))
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        return v

    kwargs: dict[str, Any] = {u: _non_negative(u) for u in units if _non_negative(u)}
    if not kwargs:
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    if _non_negative("jitter"):
        kwargs["jitter"] = _non_negative("jitter")
    for k in ("start_date", "end_date"):
        if k in spec:
            kwargs[k] = spec[k]
    return IntervalTrigger(timezone=_as_tz(spec.get("timezone")) or default_tz, **kwargs)


def _cron_trigger(spec: Any, default_tz: Any) -> CronTrigger:
    if isinstance(spec, str):
        fields = spec.split()
        if len(fields) != 5:
            raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=default_tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")

    allowed = {"second", "minute", "hour", "day", "day_of_week", "month",
               "timezone", "start_date", "end_date", "jitter"}
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")
    return CronTrigger(
        second=spec.get("second", 0),
        minute=spec.get("minute", 0),
        hour=spec.get("hour", 0),
        day=spec.get("day"),
        day_of_week=spec.get("day_of_week"),
        month=spec.get("month"),
        start_date=spec.get("start_date"),
        end_date=spec.get("end_date"),
        jitter=spec.get("jitter"),
        timezone=_as_tz(spec.get("timezone")) or default_tz,
    )


def _date_trigger(spec: Any, default_tz: Any) -> DateTrigger:
    if isinstance(spec, dict):
        run_at = spec.get("run_at")
        tzinfo = _as_tz(spec.get("timezone")) or default_tz
    else:
        run_at, tzinfo = spec, default_tz
    if run_at is None:
        raise ValueError("date trigger requires 'run_at'")

    if isinstance(run_at, bool):
        raise ValueError(f"Invalid date.run_at: {run_at!r}")
    if isinstance(run_at, (int, float)):
        dt = datetime.fromtimestamp(run_at, tz=tzinfo or timezone.utc)
    elif isinstance(run_at, datetime):
        dt = _localize(run_at, tzinfo)
    else:
        text = str(run_at).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = _localize(datetime.fromisoformat(text), tzinfo)
        except ValueError as e:
            raise ValueError(f"Invalid date.run_at: {run_at!r}") from e
    return DateTrigger(run_date=dt, timezone=dt.tzinfo)


def _parse_clock(s: str) -> tuple[int, int, int]:
    parts = s.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time.time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
        ss = int(parts[2]) if len(parts) == 3 else 0
        time(hh, mm, ss)  # range check
    except ValueError as err:
        raise ValueError(f"daily_time.time is not a valid clock time: {s!r}") from err
    return hh, mm, ss


def _daily_time_trigger(spec: Any, default_tz: Any) -> Any:
    """
    One CronTrigger per listed time (OrTrigger when several), so
    ["05:00", "06:30"] fires at exactly those two times and not 05:30/06:00.
    """
    if not isinstance(spec, dict):
        raise ValueError("daily_time must be an object")
    unknown = set(spec) - {"time", "day_of_week", "timezone"}
    if unknown:
        raise ValueError(f"daily_time has unknown field(s): {sorted(unknown)}")

    times = spec.get("time")
    if not times:
        raise ValueError("daily_time requires 'time'")
    if isinstance(times, str):
        times = [times]
    if not isinstance(times, (list, tuple)):
        raise ValueError("daily_time.time must be a string or list of strings")

    tzinfo = _as_tz(spec.get("timezone")) or default_tz
    triggers = [
        CronTrigger(second=s, minute=m, hour=h, day_of_week=spec.get("day_of_week"), timezone=tzinfo)
        for h, m, s in sorted({_parse_clock(str(t)) for t in times})
    ]
    return triggers[0] if len(triggers) == 1 else OrTrigger(triggers)


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register the job with a wrapper that runs the module through
    runner.run_module_once() and records one activity line per fire.
    Exceptions are logged here; the scheduler keeps running.
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            meta, run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                trigger_type="scheduled",
                job_context=_build_job_context(spec),
                timeout_sec=spec.timeout_sec,
                dry_run=spec.dry_run,
            )
        except Exception:
            LOG.exception("Job[%s] raised an exception.", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started)
            return

        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs (run_id=%s)", spec.id, duration, run_id)
        _write_activity(spec, status="ok", duration_s=duration, meta=meta)

    scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )

    job = scheduler.get_job(spec.id)
    nrt = getattr(job, "next_run_time", None)
    LOG.info("Registered job[%s] (module=%s) next_run_time=%s", spec.id, spec.module,
             nrt.isoformat() if nrt else None)


def _write_activity(spec: JobSpec, status: str, duration_s: float, meta: dict[str, Any] | None = None) -> None:
    try:
        write_activity_log({
            "ts": datetime.now().astimezone().isoformat(timespec="seconds"),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "summary": spec.summary,
                "message": (meta or {}).get("message"),
            },
        })
    except OSError:
        LOG.warning("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _require(d: dict[str, Any], key: str) -> Any:
    if key not in d or d[key] in (None, ""):
        raise ValueError(f"Missing required key: {key}")
    return d[key]


def _int_or(v: Any, default: int | None) -> int | None:
    """int(v), or default when v is None or not a number."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _build_job_context(spec: JobSpec) -> dict[str, Any]:
    return {
        "job_id": spec.id,
        "module": spec.module,
        "now_iso": datetime.now(timezone.utc).isoformat(),
    }
