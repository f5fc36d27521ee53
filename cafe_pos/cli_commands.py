"""
Flask CLI commands for terminal maintenance.

Commands:
- flask seed-demo: Load demo tables, products and customers
- flask settlements: List settlements that never completed
"""
from decimal import Decimal

import click
from flask import current_app

from cafe_pos.database import db_session
from cafe_pos.models import Product, DiningTable, Customer, CustomerTier

DEMO_PRODUCTS = [
    ('CF01', 'Cà phê đen', '25000', 'Coffee', 'cup'),
    ('CF02', 'Cà phê sữa', '29000', 'Coffee', 'cup'),
    ('CF03', 'Bạc xỉu', '32000', 'Coffee', 'cup'),
    ('TR01', 'Trà đào cam sả', '45000', 'Tea', 'cup'),
    ('TR02', 'Trà sen vàng', '42000', 'Tea', 'cup'),
    ('ST01', 'Sinh tố bơ', '49000', 'Smoothie', 'cup'),
    ('BK01', 'Bánh mì thịt', '30000', 'Food', 'piece'),
    ('BK02', 'Bánh flan', '20000', 'Food', 'piece'),
]

DEMO_CUSTOMERS = [
    ('KH001', 'Nguyễn Văn An', '0901000001', CustomerTier.REGULAR, '1500000'),
    ('KH002', 'Trần Thị Bình', '0901000002', CustomerTier.VIP, '22000000'),
    ('KH003', 'Lê Minh Châu', '0901000003', CustomerTier.DIAMOND, '61000000'),
]


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('seed-demo')
    @click.option('--tables', default=8, show_default=True, help='Number of dine-in tables')
    def seed_demo(tables):
        """Load demo tables (plus takeaway), products and customers."""
        takeaway_id = current_app.config.get('TAKEAWAY_TABLE_ID', 'TAKEAWAY')
        try:
            rows = [DiningTable(id=takeaway_id, name='Takeaway', capacity=0, is_takeaway=True)]
            rows += [
                DiningTable(id=f'T{n:02d}', name=f'Table {n}', capacity=4 if n % 3 else 6)
                for n in range(1, tables + 1)
            ]
            rows += [
                Product(id=pid, name=name, price=Decimal(price), category=category, unit=unit)
                for pid, name, price, category, unit in DEMO_PRODUCTS
            ]
            rows += [
                Customer(id=cid, name=name, phone=phone, tier=tier.value, lifetime_spend=Decimal(spend))
                for cid, name, phone, tier, spend in DEMO_CUSTOMERS
            ]
            for row in rows:
                db_session.merge(row)
            db_session.commit()
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'❌ Seeding failed: {e}', fg='red'))
            raise SystemExit(1)

        from cafe_pos.services.terminal_service import get_terminal
        counts = get_terminal().sync()
        click.echo(click.style('✅ Demo data loaded', fg='green', bold=True))
        click.echo(f"   Tables: {counts['tables']}  Products: {counts['products']}  Customers: {counts['customers']}")

    @app.cli.command('settlements')
    def settlements():
        """List settlements that stopped before completing."""
        from cafe_pos.services.terminal_service import get_terminal

        pending = get_terminal().coordinator.pending_settlements()
        if not pending:
            click.echo(click.style('✅ No incomplete settlements', fg='green'))
            return

        click.echo(click.style(f'⚠ {len(pending)} incomplete settlement(s):', fg='yellow', bold=True))
        for log in pending:
            click.echo(
                f"   {log['key']}  invoice={log.get('invoice_id')}  table={log.get('table_id')}  "
                f"status={log.get('status')}  steps={','.join(log.get('steps_completed') or []) or '-'}  "
                f"lines_written={len(log.get('lines_written') or [])}  failed_lines={log.get('failed_lines')}"
            )
            if log.get('error'):
                click.echo(f"      error: {log['error']}")
