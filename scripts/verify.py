"""
Booking Ledger Verification Script

Checks the Excel booking ledger for double-booked tables.
Run from project root: python scripts/verify.py
"""

import sys
from datetime import datetime

import pandas as pd

from tablewise.services.excel_manager import ExcelManager

ACTIVE_STATUSES = {"pending", "confirmed", "seated"}


def latest_rows(df: pd.DataFrame) -> pd.DataFrame:
    """The ledger appends a row per change; the newest row per booking is its current state."""
    return df.sort_values("updated_at", kind="stable").drop_duplicates(subset="booking_id", keep="last")


def find_double_bookings(df: pd.DataFrame) -> pd.DataFrame:
    """Current bookings sharing a table and slot while active."""
    df = latest_rows(df)
    active = df[df["status"].isin(ACTIVE_STATUSES) & df["table_id"].notna()]
    key = ["table_id", "booking_date", "booking_time"]
    return active[active.duplicated(subset=key, keep=False)].sort_values(key)


def verify_ledger() -> bool:
    ledger = ExcelManager.ledger_file()

    print("=" * 60)
    print("🔍 BOOKING LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {ledger}")
    print("=" * 60)

    if not ledger.exists():
        print("\n❌ Ledger file not found!")
        print("   Run the simulation first: python scripts/simulate.py")
        return False

    try:
        df = pd.read_excel(ledger, engine='openpyxl')
        print(f"\n✅ File loaded successfully!")
    except Exception as e:
        print(f"\n❌ Could not read ledger: {e}")
        return False

    print(f"\n📊 STATISTICS:")
    current = latest_rows(df) if "booking_id" in df.columns else df
    print(f"   Ledger Rows: {len(df)}")
    print(f"   Bookings: {len(current)}")
    if len(current) and "assignment_method" in current.columns:
        for method, count in current["assignment_method"].value_counts().items():
            print(f"   {method}: {count}")

    missing = [col for col in ExcelManager.BOOKING_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
        return False
    print(f"\n✅ All required columns present")

    ok = True
    if current["status"].isin(ACTIVE_STATUSES).sum() == 0:
        print("ℹ️ No active bookings in the ledger")

    clashes = find_double_bookings(df)
    if len(clashes):
        print(f"\n🚨 {len(clashes)} rows share an active table slot:")
        cols = ['booking_id', 'table_number', 'booking_date', 'booking_time', 'status']
        print(clashes[cols].to_string(index=False))
        ok = False
    else:
        print(f"✅ No table booked twice for the same slot")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)
    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_ledger() else 1)
