#!/usr/bin/env python3
"""
TunesNow • Batch Uploader
=========================

CLI helper that drives the batch protocol end to end for local files:
create a batch, request one slot per file, PUT each body to its signed URL,
signal the upload and trigger ingestion, then print the batch status.

Files ending in an image extension are uploaded as artwork; everything else
as audio.

Examples
--------
1) Upload an album (audio + cover) with a bearer token:
    python scripts/uploader.py \
      --api http://localhost:8000/api/v1 \
      --token "$TUNESNOW_TOKEN" \
      ./01-blue-train.flac ./02-moments-notice.flac ./cover.jpg

2) Private batch, don't trigger ingestion yet:
    python scripts/uploader.py --api ... --token ... --private --no-ingest ./demo.wav
"""

import argparse
import hashlib
import mimetypes
import os
import sys
import time
from typing import Dict, List

import requests

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
MAX_SIGNAL_ATTEMPTS = 5


def compute_sha256(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _kind(path: str) -> str:
    return "artwork" if os.path.splitext(path)[1].lower() in IMAGE_EXTS else "audio"


def _signal_uploaded(api: str, headers: Dict[str, str], media_id: str) -> None:
    for _ in range(MAX_SIGNAL_ATTEMPTS):
        r = requests.post(f"{api}/media/{media_id}/uploaded", headers=headers, timeout=30)
        if r.status_code == 409:
            time.sleep(int(r.headers.get("Retry-After", "2")))
            continue
        r.raise_for_status()
        return
    raise RuntimeError(f"upload for {media_id} never became visible")


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("files", nargs="+", help="Audio files and artwork to upload together")
    ap.add_argument("--api", required=True, help="API base (e.g., http://localhost:8000/api/v1)")
    ap.add_argument("--token", required=True, help="Bearer access token")
    ap.add_argument("--private", action="store_true", help="Create new tracks as private to the uploader")
    ap.add_argument("--no-ingest", action="store_true", help="Only upload and signal; skip ingestion")
    args = ap.parse_args()

    for path in args.files:
        if not os.path.isfile(path):
            print(f"Not a file: {path}", file=sys.stderr)
            sys.exit(2)

    api = args.api.rstrip("/")
    headers = {"Authorization": f"Bearer {args.token}"}

    r = requests.post(f"{api}/batches", json={"private": args.private}, headers=headers, timeout=30)
    r.raise_for_status()
    batch_id = r.json()["id"]
    print(f"Batch {batch_id}")

    media_ids: List[str] = []
    for path in args.files:
        ctype = mimetypes.guess_type(path)[0] or "application/octet-stream"
        size = os.path.getsize(path)
        sha = compute_sha256(path)
        slot = requests.post(
            f"{api}/batches/{batch_id}/media",
            json={"kind": _kind(path), "size_bytes": size, "sha256": sha, "content_type": ctype},
            headers=headers,
            timeout=30,
        )
        if slot.status_code != 201:
            print(f"Slot refused for {path}: {slot.status_code} {slot.text}", file=sys.stderr)
            sys.exit(1)
        grant = slot.json()
        upload = grant["upload"]

        print(f"Uploading {path} ({size} bytes, sha256={sha})...")
        with open(path, "rb") as f:
            resp = requests.put(upload["url"], data=f, headers=upload["headers"], timeout=300)
        if resp.status_code not in (200, 201):
            print(f"Upload failed: {resp.status_code} {resp.text}", file=sys.stderr)
            sys.exit(1)

        _signal_uploaded(api, headers, grant["media_object_id"])
        media_ids.append(grant["media_object_id"])

    if not args.no_ingest:
        for media_id in media_ids:
            r = requests.post(f"{api}/media/{media_id}/ingest", headers=headers, timeout=300)
            r.raise_for_status()
            body = r.json()
            line = f"{media_id}: {body['state']}"
            if body.get("error_kind"):
                line += f" ({body['error_kind']}: {body.get('error_detail')})"
            print(line)

    status = requests.get(f"{api}/batches/{batch_id}", headers=headers, timeout=30)
    status.raise_for_status()
    print(f"Batch status: {status.json()['status']}")


if __name__ == "__main__":
    main()
