#!/usr/bin/env python3
"""
Consent Ledger Walkthrough Demo

Runs the full consent lifecycle against the bootstrap network from
config.yaml:

1. provider-789 requests access to patient-123's records
2. patient-123 approves, provider-789 reads the records
3. patient-123 revokes, the next read is denied and raises a security alert
4. admin-001 suspends provider-789
5. the security log is printed and every audit chain is verified

Usage:
    python demo_consent_ledger.py
    python demo_consent_ledger.py --duration-days 7
    python demo_consent_ledger.py --log-format json --log-level DEBUG
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config.config_loader import get_logging_config
from core.exceptions import LedgerError
from core.utils import setup_logging
from ledger.service import ConsentLedgerService

PROVIDER = "provider-789"
PATIENT = "patient-123"
ADMIN = "admin-001"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Consent ledger walkthrough")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument(
        "--duration-days", type=int, default=None, help="Requested consent duration"
    )
    parser.add_argument("--purpose", default="Annual Checkup", help="Stated purpose")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-format", default=None, choices=["json", "console"])
    return parser.parse_args(argv)


def step(title: str) -> None:
    print(f"\n=== {title} ===")


def run_demo(args) -> int:
    service = ConsentLedgerService.from_config(args.config, seed=True)

    step("Network identities")
    for user in service.get_all_users():
        print(f"  {user['id']:<14} {user['role']:<9} {user['organization']:<14} {user['status']}")

    step("Provider requests consent")
    contract_id = service.request_consent(
        PROVIDER, PATIENT, args.purpose, args.duration_days
    )
    print(f"  contract {contract_id} is PENDING")
    print(f"  authorized before approval: {service.authorize(PROVIDER, PATIENT)}")

    step("Patient approves")
    contract = service.approve_consent(contract_id, PATIENT)
    print(f"  status {contract['status']}, expires {contract['expires_at']}")

    step("Provider reads records")
    record = service.access_records(PROVIDER, PATIENT)
    print(json.dumps(record, indent=2))

    step("Patient revokes")
    service.revoke_consent(contract_id, PATIENT)
    try:
        service.access_records(PROVIDER, PATIENT)
    except LedgerError as e:
        print(f"  {e}")

    step("Admin suspends provider")
    service.suspend_user(PROVIDER, ADMIN)
    print(f"  authorized after suspension: {service.authorize(PROVIDER, PATIENT)}")

    step("Contract history")
    for entry in service.get_contract_history(contract_id):
        print(f"  #{entry['sequence']} {entry['action']:<8} {entry['actor_id']:<14} {entry['integrity_hash'][:16]}")

    step("Security log")
    for entry in service.get_security_logs():
        print(f"  #{entry['sequence']} {entry['action']:<13} {entry['actor_id']:<14} {entry['details']}")

    step("Integrity")
    report = service.verify_integrity()
    print(f"  valid={report['valid']} contracts_checked={report['contracts_checked']}")
    print(f"  {service.get_stats()}")
    return 0 if report["valid"] else 1


def main(argv=None) -> int:
    args = parse_args(argv)
    logging_config = get_logging_config(args.config)
    setup_logging(
        level=args.log_level or logging_config.level,
        log_format=args.log_format or logging_config.format,
        log_file=logging_config.file,
    )
    try:
        return run_demo(args)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
