#!/usr/bin/env python3
import argparse
import asyncio
import json
import sys

from app.jobs.poller import RemoteJobClient
from app.ops.errors import OrchestratorError


def _print_update(snap):
    tasks = snap.get("tasks") or []
    counts = {}
    for t in tasks:
        counts[t.get("state")] = counts.get(t.get("state"), 0) + 1
    print(f"[poll] {snap.get('id')} state={snap.get('state')} tasks={json.dumps(counts, sort_keys=True)}")


async def run(args) -> int:
    body = {"options": {"strength": args.strength, "steps": args.steps, "cfg": args.cfg}}
    if args.seed is not None:
        body["options"]["seed"] = args.seed
    if args.image_url:
        body["imageUrl"] = args.image_url
    else:
        body["imageId"] = args.image_id
    if args.preset:
        body["presetId"] = args.preset

    client = RemoteJobClient(args.base_url)
    try:
        job_id = await client.generate(body)
        print(f"[ok] job {job_id} created")
        final = await client.wait(job_id, interval_s=args.interval, timeout_s=args.timeout, on_update=_print_update)
    except OrchestratorError as ex:
        print(f"[error] {ex.code}: {ex.message}", file=sys.stderr)
        return 2
    except TimeoutError as ex:
        print(f"[error] {ex}", file=sys.stderr)
        return 3
    finally:
        await client.aclose()

    for t in final.get("tasks") or []:
        pose = t.get("pose") or {}
        where = t.get("artifactRef") or (t.get("error") or {}).get("message")
        print(f"  #{t.get('index')} {pose.get('azimuth')}/{pose.get('elevation')}/{pose.get('distance')} {t.get('state')} {where}")
    print(f"[done] {final.get('state')}")
    return 0 if final.get("state") == "completed" else 1


def main():
    ap = argparse.ArgumentParser(description="Start a multi-angle job and poll it until it settles")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--image-id", help="Library image id")
    src.add_argument("--image-url", help="Source image URL")
    ap.add_argument("--preset", default=None, help="Preset id (default: product-basic)")
    ap.add_argument("--strength", type=float, default=0.9)
    ap.add_argument("--steps", type=int, default=20)
    ap.add_argument("--cfg", type=float, default=7.0)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--interval", type=float, default=2.0, help="Seconds between status polls")
    ap.add_argument("--timeout", type=float, default=900.0, help="Give up after this many seconds")
    ap.add_argument("--base-url", default="http://localhost:8000", help="Orchestrator base URL")
    args = ap.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
