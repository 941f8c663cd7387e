#!/usr/bin/env python
"""Idempotent seed script for reference data.

Creates the default SLA policies (one per priority), the head-office site and
an initial Admin account when they are missing.

Usage:
    python backend/scripts/seed_reference.py              # seed normally
    python backend/scripts/seed_reference.py --show       # print policies & head office after seeding
    python backend/scripts/seed_reference.py --dry-run    # run logic then rollback (no DB changes)
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from ticketops import create_app, get_db  # type: ignore
from ticketops.models.authz import Base, User
from ticketops.models.site import Site
from ticketops.models.sla_policy import SlaPolicy
from ticketops.constants.permissions import ROLE_ADMIN
from ticketops.constants.sla import DEFAULT_SLA_POLICIES
from ticketops.utils.timeutil import utcnow


def ensure_sla_policies(session):
    existing = {p.priority for p in session.execute(select(SlaPolicy)).scalars().all()}
    created = 0
    for row in DEFAULT_SLA_POLICIES:
        if row['priority'] in existing:
            continue
        session.add(SlaPolicy(is_active=True, updated_at=utcnow(), **row))
        created += 1
    return created


def ensure_head_office(session):
    ho = session.execute(select(Site).where(Site.is_head_office.is_(True))).scalar_one_or_none()
    if ho:
        return 0
    code = os.getenv('SEED_HO_SITE_CODE', 'HO')
    clash = session.execute(select(Site).where(Site.site_code == code)).scalar_one_or_none()
    if clash:
        clash.is_head_office = True
        clash.updated_at = utcnow()
        print(f"[INFO] Marked existing site {code} as head office.")
        return 0
    session.add(Site(site_code=code, site_name=os.getenv('SEED_HO_SITE_NAME', 'Head Office'),
                     is_head_office=True, is_active=True, updated_at=utcnow()))
    return 1


def ensure_initial_admin(session):
    username = os.getenv('SEED_ADMIN_USERNAME', 'admin')
    email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    existing = session.execute(select(User).where((User.username == username) | (User.email == email))).scalar_one_or_none()
    if existing:
        return 0
    user = User(username=username, email=email, full_name='Administrator', role=ROLE_ADMIN,
                is_active=True, password_hash='')
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    print(f"[INFO] Created initial admin user {username} with temporary password.")
    return 1


def print_summary(session):
    print(f"{'Priority':<8} | {'Response':>8} | {'Restore':>8} | Name")
    print('-' * 50)
    for p in session.execute(select(SlaPolicy).order_by(SlaPolicy.priority)).scalars():
        flag = '' if p.is_active else ' (inactive)'
        print(f"{p.priority:<8} | {p.response_minutes:>8} | {p.restore_minutes:>8} | {p.policy_name}{flag}")
    ho = session.execute(select(Site).where(Site.is_head_office.is_(True))).scalar_one_or_none()
    print(f"\nHead office: {ho.site_code + ' - ' + ho.site_name if ho else '(none)'}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed SLA policies, head office and initial admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_reference.py\n  dry run: seed_reference.py --dry-run\n  show: seed_reference.py --show\n""")
    )
    p.add_argument('--show', action='store_true', help='Print SLA policies and head office after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--skip-admin', action='store_true', help='Do not create the initial Admin account')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM sla_policies LIMIT 1'))
        except Exception:
            # Bootstrap without migrations; in real environments prefer `alembic upgrade head`
            session.rollback()
            from ticketops.models import audit, asset, ticket, requisition, rma, client_registration  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        finally:
            session.commit()

    with app.app_context():
        session = get_db()
        try:
            created_p = ensure_sla_policies(session)
            created_s = ensure_head_office(session)
            created_u = 0 if args.skip_admin else ensure_initial_admin(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Policies: {created_p}, Head office: {created_s}, Admin: {created_u}")
            else:
                session.commit()
                print(f"[DONE] Policies created: {created_p}, Head office created: {created_s}, Admin created: {created_u}")
            if args.show:
                print()
                print_summary(session)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
