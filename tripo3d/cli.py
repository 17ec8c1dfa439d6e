"""
Command line entry point.

Usage:
    tripo3d text "a red sports car" --wait --output models/
    tripo3d image photo.png --wait --output models/
    tripo3d task <TASK_ID>
    tripo3d wait <TASK_ID> --output models/ [--bucket my-bucket]
    tripo3d balance
    tripo3d upload photo.png [--s3]
    tripo3d watch [<TASK_ID>]

The API key is read from TRIPO_API_KEY (or a .env file) unless --api-key is given.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Sequence

from tripo3d.config import ClientConfig
from tripo3d.errors import PartialDownloadFailure, TripoError
from tripo3d.poller import DEFAULT_POLL_INTERVAL, DEFAULT_WAIT_TIMEOUT, RetryPolicy
from tripo3d.schema import GenerationOptions, Task, TaskStatus
from tripo3d.tripo_client import TripoClient


logger = logging.getLogger("tripo3d")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def _print_json(value) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2, default=str))


def _task_dict(task: Task) -> dict:
    data = asdict(task)
    data["status"] = task.status.value
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tripo3d", description="Tripo3D API command line client")
    parser.add_argument("--api-key", help="API key (default: $TRIPO_API_KEY)")
    parser.add_argument("--base-url", help="API base URL (default: $TRIPO_API_URL or the public endpoint)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_wait_args(p: argparse.ArgumentParser, flag: bool) -> None:
        if flag:
            p.add_argument("--wait", action="store_true", help="Wait for the task to finish")
        p.add_argument("--output", type=Path, help="Download the models into this directory")
        p.add_argument("--interval", type=float, default=DEFAULT_POLL_INTERVAL, help="Seconds between polls")
        p.add_argument("--timeout", type=float, default=DEFAULT_WAIT_TIMEOUT, help="Give up after this many seconds")
        p.add_argument("--retries", type=int, default=0, help="Transient errors tolerated while polling")
        p.add_argument("--bucket", help="Also upload downloaded files to this GCS bucket")

    def add_generation_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--model-version")
        p.add_argument("--face-limit", type=int)
        p.add_argument("--no-texture", action="store_true")
        p.add_argument("--pbr", action="store_true")

    p_text = sub.add_parser("text", help="Create a text-to-model task")
    p_text.add_argument("prompt")
    p_text.add_argument("--negative-prompt")
    add_generation_args(p_text)
    add_wait_args(p_text, flag=True)

    p_image = sub.add_parser("image", help="Create an image-to-model task")
    p_image.add_argument("image", help="Image URL, file token or local path")
    add_generation_args(p_image)
    add_wait_args(p_image, flag=True)

    p_task = sub.add_parser("task", help="Show a task")
    p_task.add_argument("task_id")

    p_wait = sub.add_parser("wait", help="Wait for a task and optionally download its models")
    p_wait.add_argument("task_id")
    add_wait_args(p_wait, flag=False)

    sub.add_parser("balance", help="Show the account balance")

    p_upload = sub.add_parser("upload", help="Upload an image and print its file token")
    p_upload.add_argument("path", type=Path)
    p_upload.add_argument("--s3", action="store_true", help="Upload straight to S3 and print the file object")

    p_watch = sub.add_parser("watch", help="Stream task updates over WebSocket")
    p_watch.add_argument("task_id", nargs="?", help="Watch one task (default: all tasks)")

    return parser


def _options(args: argparse.Namespace) -> GenerationOptions:
    return GenerationOptions(
        model_version=args.model_version,
        negative_prompt=getattr(args, "negative_prompt", None),
        face_limit=args.face_limit,
        texture=False if args.no_texture else None,
        pbr=True if args.pbr else None,
    )


async def _wait_and_download(client: TripoClient, task_id: str, args: argparse.Namespace) -> int:
    task = await client.wait_for_task(
        task_id,
        poll_interval=args.interval,
        timeout=args.timeout,
        verbose=True,
        retry=RetryPolicy(max_retries=args.retries),
    )
    _print_json(_task_dict(task))
    if task.status != TaskStatus.SUCCESS:
        logger.error("Task %s finished with status %s", task.task_id, task.raw_status)
        return 1
    if args.output is None:
        return 0

    try:
        paths = await client.download_task_models(task, args.output)
        code = 0
    except PartialDownloadFailure as exc:
        logger.error("%s", exc)
        paths = exc.succeeded
        code = 1

    if not paths:
        print("No models were available for download.")
    for path in paths:
        print(path)

    if args.bucket and paths:
        # Imported lazily so the storage SDK is only loaded when it is used
        from tripo3d.gcs_storage import GCSArtifactStore

        store = GCSArtifactStore(args.bucket)
        for name in store.upload_artifacts(task.task_id, paths):
            print(f"gs://{args.bucket}/{name}")
    return code


async def run(args: argparse.Namespace, config: ClientConfig) -> int:
    async with TripoClient(config=config) as client:
        if args.command == "text":
            task_id = await client.text_to_3d(args.prompt, _options(args))
            print(task_id)
            if args.wait or args.output:
                return await _wait_and_download(client, task_id, args)
            return 0

        if args.command == "image":
            task_id = await client.image_to_3d(args.image, _options(args))
            print(task_id)
            if args.wait or args.output:
                return await _wait_and_download(client, task_id, args)
            return 0

        if args.command == "task":
            _print_json(_task_dict(await client.get_task(args.task_id)))
            return 0

        if args.command == "wait":
            return await _wait_and_download(client, args.task_id, args)

        if args.command == "balance":
            _print_json(asdict(await client.get_balance()))
            return 0

        if args.command == "upload":
            if args.s3:
                _print_json((await client.upload_file_s3(args.path)).to_payload())
            else:
                print(await client.upload_file(args.path))
            return 0

        if args.command == "watch":
            stream = client.watch_task(args.task_id) if args.task_id else client.watch_all_tasks()
            async for task in stream:
                print(f"{task.task_id} {task.raw_status} {task.progress}%")
            return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        config = ClientConfig.from_env(api_key=args.api_key, base_url=args.base_url)
        return asyncio.run(run(args, config))
    except TripoError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
