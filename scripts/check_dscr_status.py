#!/usr/bin/env python3
"""
Check the reconciled DSCR status of a loan from the command line.

Runs the same reconciliation as GET /v1/loans/{loan_id}/dscr-status,
bypassing the response cache, and optionally prints the verification
history and the notice/contract cross-check.

Usage:
    python scripts/check_dscr_status.py --loan-id clx123 --address 0xabc...
    python scripts/check_dscr_status.py --loan-id clx123 --approver --history
"""

import json

from script_utils import (
    create_loan_parser,
    get_db_session,
    print_header,
    print_subheader,
    print_summary,
    run_async,
)

from app.services.errors import VerificationError
from app.services.reconciliation import ReconciliationEngine
from app.services.transaction_ledger import AccessScope, build_request
from app.services.verification_history import build_onchain_check, build_verification_history


async def main():
    parser = create_loan_parser("Check DSCR verification status for a loan")
    parser.add_argument(
        '--history',
        action='store_true',
        help='Also print verification history and the on-chain cross-check'
    )
    args = parser.parse_args()

    if not args.address and not args.approver:
        parser.error("--address is required unless --approver is set")

    scope = AccessScope.REVIEWER if args.approver else AccessScope.OWNER
    engine = ReconciliationEngine.from_settings()
    request = build_request(args.loan_id, args.address, scope)

    print_header(f"DSCR STATUS: {args.loan_id}")
    print(f"  Contract: {engine.contract_address or 'not configured'}")
    print(f"  Notice feed: {engine.notice_client.graphql_url}")
    print()

    async with get_db_session() as session:
        try:
            record = await engine.reconcile(session, request)
        except VerificationError as e:
            print(f"Error: {e}")
            return

    print(json.dumps(record.to_response(), indent=2))

    if args.history:
        print_subheader("VERIFICATION HISTORY")
        history = await build_verification_history(engine, args.loan_id)
        print(json.dumps(history, indent=2))

        print_subheader("ON-CHAIN CHECK")
        check = await build_onchain_check(engine, args.loan_id)
        print(json.dumps(check, indent=2))

    print_summary({
        'proof_source': record.proof_source.value if record.proof_source else 'none',
        'processing': record.processing,
        'pending_relay': record.pending_relay,
    })


if __name__ == "__main__":
    run_async(main())
