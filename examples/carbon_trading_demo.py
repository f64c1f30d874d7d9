# examples/carbon_trading_demo.py
# Run with: python examples/carbon_trading_demo.py
#
# Walks through a small trading day against an in-memory ledger, then
# audits the result with LedgerVerifier.

import logging

from carbon_ledger import CarbonLedger, LedgerVerifier, Role, InsufficientBalance


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[carbon-ledger] %(message)s")

    admin, issuer, auditor = "0xadmin", "0xissuer", "0xauditor"
    trader1, trader2 = "0xtrader1", "0xtrader2"

    ledger = CarbonLedger(admin=admin)
    ledger.grant_role(admin, Role.ISSUER, issuer)
    ledger.grant_role(admin, Role.AUDITOR, auditor)

    ledger.register_account(admin, trader1, "Trader1 Organization")
    ledger.register_account(admin, trader2, "Trader2 Organization")
    print("trader1 is TRADER:", ledger.check_role(admin, trader1, 1))

    ledger.issue_credit(issuer, trader1, 200)
    trade = ledger.transfer_credits(trader1, trader2, 50)
    print(f"trade {trade.trade_id}: balances {ledger.balance_of(trader1)} / {ledger.balance_of(trader2)}")

    credit = ledger.audit_credit(auditor, trader1, 0)
    print("audited credit:", credit)
    print("seller view:", ledger.get_trade_record(trader1, trader1, trade.trade_id))
    print("buyer view: ", ledger.get_trade_record(trader1, trader2, trade.trade_id))

    try:
        ledger.transfer_credits(trader2, trader1, 500)
    except InsufficientBalance as e:
        print("rejected:", e)

    result = LedgerVerifier().verify(ledger.events(), ledger.accounts_snapshot())
    print(result)
