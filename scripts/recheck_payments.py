"""Run a bulk donation payment recheck and print the NDJSON stream as it arrives."""

import argparse
import json
from pathlib import Path

import httpx


def read_ids(inline: list[str], file_path: str | None) -> list[str]:
    """Merge donation ids from argv and an optional one-id-per-line file."""

    ids = list(inline)
    if file_path:
        ids.extend(line.strip() for line in Path(file_path).read_text().splitlines() if line.strip())
    return ids


def main() -> None:
    """CLI entrypoint for bulk payment rechecks."""

    parser = argparse.ArgumentParser(description="Recheck donation payments against the gateway.")
    parser.add_argument("donation_ids", nargs="*")
    parser.add_argument("--file", dest="ids_file", default=None, help="File with one donation id per line")
    parser.add_argument("--donations-url", default="http://localhost:8003")
    parser.add_argument("--user-id", required=True, help="Admin user id sent as x-user-id")
    parser.add_argument("--timeout", type=float, default=300.0)
    args = parser.parse_args()

    ids = read_ids(args.donation_ids, args.ids_file)
    if not ids:
        raise SystemExit("Provide donation ids as arguments or via --file")

    with httpx.stream(
        "POST",
        f"{args.donations_url}/admin/donations/bulk-recheck-payment",
        json={"donationIds": ids},
        headers={"x-user-id": args.user_id},
        timeout=args.timeout,
    ) as resp:
        resp.raise_for_status()
        for line in resp.iter_lines():
            if not line:
                continue
            event = json.loads(line)
            if event["type"] == "progress":
                print(f"[{event['completed']}/{event['total']}] {event['message']}")
            elif event["type"] == "complete":
                print(json.dumps(event["summary"], indent=2))
                for result in event["results"]:
                    if not result["recheckSuccess"]:
                        print(f"FAILED {result['donationId']}: {result.get('errorMessage')}")
            else:
                raise SystemExit(f"Recheck aborted: {event.get('error')}")


if __name__ == "__main__":
    main()
