#!/usr/bin/env python3
"""Seed a local database with synthetic brokerage data.

Creates:
- insurers, products, advisors and usage types
- clients with one policy each, advisors and beneficiaries attached
- pending collections for in-force policies
- a commission batch with entries and advisor rules
- consumptions for a handful of policies
"""

from __future__ import annotations

import argparse
import random
import sys
from datetime import date, timedelta
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from brokerdesk import catalog, clients, commissions, consumptions, premium_collections
from brokerdesk.config import DB_PATH
from brokerdesk.persistence import init_db

INSURERS = {
    "Seguros Caracas": ["Salud Integral", "Vida Plus"],
    "Mercantil Seguros": ["HCM Familiar", "Auto Total"],
    "Seguros La Previsora": ["Salud Básica"],
}
ADVISORS = ["Ana Rodríguez", "Luis Pérez", "Carmen Díaz"]
USAGE_TYPES = ["Consulta", "Emergencia", "Hospitalización", "Farmacia"]
FIRST_NAMES = ["María", "José", "Carlos", "Daniela", "Andrés", "Valentina", "Pedro", "Gabriela", "Luis", "Sofía"]
LAST_NAMES = ["González", "Rodríguez", "Hernández", "Martínez", "Pérez", "García", "Ramírez", "Torres"]
FREQUENCIES = ["mensual", "trimestral", "semestral", "anual"]


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed synthetic brokerage data.")
    p.add_argument("--db", type=Path, default=DB_PATH)
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--clients", type=int, default=40)
    return p.parse_args()


def seed(db: Path, rng: random.Random, client_count: int) -> dict[str, int]:
    init_db(db)
    today = date.today()

    advisors = [
        catalog.save_catalog_item(db, "advisors", {"full_name": name, "commission_rate": rng.choice([30, 40, 50])})
        for name in ADVISORS
    ]
    insurers = []
    products: dict[str, list[dict]] = {}
    for insurer_name, product_names in INSURERS.items():
        insurer = catalog.save_catalog_item(db, "insurers", {"name": insurer_name})
        insurers.append(insurer)
        products[insurer["id"]] = [
            catalog.save_catalog_item(db, "products", {"insurer_id": insurer["id"], "name": name, "category": "salud"})
            for name in product_names
        ]
    for name in USAGE_TYPES:
        catalog.save_catalog_item(db, "usage_types", {"name": name})

    for advisor in advisors:
        for insurer in insurers:
            commissions.upsert_rule(db, advisor["id"], insurer["id"], rng.choice([40.0, 50.0, 60.0]))

    policies = []
    for idx in range(1, client_count + 1):
        birth = date(rng.randint(1955, 2000), rng.randint(1, 12), rng.randint(1, 28))
        first, last = rng.choice(FIRST_NAMES), rng.choice(LAST_NAMES)
        client = clients.create_client(
            db,
            {
                "identification_type": "cedula",
                "identification_number": f"V-{10_000_000 + idx * 7919}",
                "first_name": first,
                "last_name": last,
                "email": f"{first.lower()}.{last.lower()}{idx}@example.com",
                "mobile": f"0414{rng.randint(1_000_000, 9_999_999)}",
                "birth_date": birth.isoformat(),
            },
        )
        insurer = rng.choice(insurers)
        end = today + timedelta(days=rng.randint(-20, 330))
        advisor = rng.choice(advisors)
        policy = clients.create_policy(
            db,
            {
                "client_id": client["id"],
                "insurer_id": insurer["id"],
                "product_id": rng.choice(products[insurer["id"]])["id"],
                "policy_number": f"POL-{idx:06d}",
                "start_date": (end - timedelta(days=365)).isoformat(),
                "end_date": end.isoformat(),
                "status": "vigente",
                "premium": float(rng.randint(600, 4800)),
                "payment_frequency": rng.choice(FREQUENCIES),
                "premium_payment_date": (today + timedelta(days=rng.randint(-45, 30))).isoformat(),
                "primary_advisor_id": advisor["id"],
            },
        )
        clients.add_beneficiary(
            db,
            policy["id"],
            {"first_name": first, "last_name": last, "relationship": "tomador_titular", "percentage": 100},
        )
        policies.append(policy)

    synced = premium_collections.sync_collections(db)

    batch = commissions.create_batch(db, insurers[0]["id"], today.replace(day=1).isoformat())
    commissions.save_entries(
        db,
        batch["id"],
        [
            {
                "policy_number": p["policy_number"],
                "client_name": f"{p['client_first_name']} {p['client_last_name']}",
                "premium": p["premium"],
                "commission_rate": 10.0,
            }
            for p in policies
            if p["insurer_id"] == insurers[0]["id"]
        ],
    )

    usage_type_ids = [u["id"] for u in catalog.list_catalog(db, "usage_types")]
    consumption_count = 0
    for policy in rng.sample(policies, k=min(10, len(policies))):
        for _ in range(rng.randint(1, 4)):
            consumptions.create_consumption(
                db,
                {
                    "policy_id": policy["id"],
                    "beneficiary_name": f"{policy['client_first_name']} {policy['client_last_name']}",
                    "usage_type_id": rng.choice(usage_type_ids),
                    "usage_date": (today - timedelta(days=rng.randint(1, 300))).isoformat(),
                    "description": "Atención médica",
                    "amount_usd": float(rng.randint(20, 900)),
                },
                "seed",
            )
            consumption_count += 1

    return {
        "clients": client_count,
        "policies": len(policies),
        "collections": synced["created"],
        "consumptions": consumption_count,
    }


def main() -> None:
    args = parse_args()
    counts = seed(args.db, random.Random(args.seed), args.clients)
    for name, count in counts.items():
        print(f"{name}: {count}")


if __name__ == "__main__":
    main()
