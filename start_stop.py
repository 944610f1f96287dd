import argparse
import json
import os
from typing import Optional

import requests

API_BASE = os.getenv("OFFPEAK_API", "http://127.0.0.1:8080")


def _do_json(method: str, url: str, body: Optional[str] = None) -> requests.Response:
    headers = {
        "Content-Type": "application/json",
        "Connection": "close",
    }
    resp = requests.request(method, url, data=body, headers=headers, timeout=45)
    print(f"{method} {url} -> {resp.status_code} {resp.reason}")
    print(resp.text)
    return resp


def start_charge(cpid: str, connector_id: int) -> requests.Response:
    url = f"{API_BASE}/clients/{cpid}/start"
    return _do_json("POST", url, json.dumps({"connectorId": connector_id}))


def stop_charge(cpid: str) -> requests.Response:
    return _do_json("POST", f"{API_BASE}/clients/{cpid}/stop")


def soft_reset(cpid: Optional[str]) -> requests.Response:
    if cpid is None:
        return _do_json("POST", f"{API_BASE}/softreset")
    return _do_json("POST", f"{API_BASE}/clients/{cpid}/softreset")


def show_status(cpid: Optional[str]) -> requests.Response:
    if cpid is None:
        return _do_json("GET", f"{API_BASE}/clients")
    return _do_json("GET", f"{API_BASE}/clients/{cpid}")


def trigger(cpid: str, message: str) -> requests.Response:
    return _do_json("GET", f"{API_BASE}/clients/{cpid}/trigger/{message}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Control the off-peak central system via its HTTP API")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_start = sub.add_parser("start", help="remote start charging now")
    p_start.add_argument("cpid")
    p_start.add_argument("connectorId", type=int, nargs="?", default=1)

    p_stop = sub.add_parser("stop", help="remote stop the active transaction")
    p_stop.add_argument("cpid")

    p_reset = sub.add_parser("softreset", help="soft reset one charger, or all of them")
    p_reset.add_argument("cpid", nargs="?")

    p_status = sub.add_parser("status", help="show one session, or list chargers")
    p_status.add_argument("cpid", nargs="?")

    p_trigger = sub.add_parser("trigger", help="ask a charger to send a message and print it")
    p_trigger.add_argument("cpid")
    p_trigger.add_argument("message", choices=["StatusNotification", "BootNotification", "Heartbeat", "MeterValues"])

    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    if args.cmd == "start":
        start_charge(args.cpid, args.connectorId)
    elif args.cmd == "stop":
        stop_charge(args.cpid)
    elif args.cmd == "softreset":
        soft_reset(args.cpid)
    elif args.cmd == "status":
        show_status(args.cpid)
    elif args.cmd == "trigger":
        trigger(args.cpid, args.message)


if __name__ == "__main__":
    main()
