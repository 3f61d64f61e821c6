"""
Verificacao rapida de uma API em execucao.

Confere /health e /doctor e mostra o estado do agendador. Com
GESTOR_ADMIN_PASSWORD definido, tambem faz login e le o painel.
"""
import os
import sys
from typing import Optional

import requests

BASE_URL = os.getenv("GESTOR_API_BASE_URL", "http://127.0.0.1:8000/api")
ADMIN_USERNAME = os.getenv("GESTOR_ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("GESTOR_ADMIN_PASSWORD")
TIMEOUT = 10


def fetch(session: requests.Session, endpoint: str) -> Optional[dict]:
    try:
        res = session.get(f"{BASE_URL}{endpoint}", timeout=TIMEOUT)
    except requests.RequestException as exc:
        print(f"FAIL {endpoint}: {exc.__class__.__name__}")
        return None
    if res.status_code != 200:
        print(f"FAIL {endpoint}: HTTP {res.status_code}")
        return None
    return res.json()


def check_health(session: requests.Session) -> bool:
    body = fetch(session, "/health")
    if body is None:
        return False
    if body.get("status") != "ok":
        print(f"FAIL /health: status={body.get('status')}")
        return False
    print("OK   /health")
    return True


def check_doctor(session: requests.Session) -> bool:
    body = fetch(session, "/doctor")
    if body is None:
        return False
    print(
        f"{'OK  ' if body.get('status') == 'OK' else 'WARN'} /doctor: "
        f"storage={body.get('storage')} scheduler={body.get('scheduler')} "
        f"next_sweep={body.get('next_sweep')}"
    )
    last = body.get("last_sweep")
    if last:
        print(f"     ultima varredura: {last}")
    else:
        print("     nenhuma varredura concluida ainda")
    return body.get("status") in {"OK", "WARN"}


def check_dashboard(session: requests.Session) -> bool:
    try:
        res = session.post(
            f"{BASE_URL}/auth/login",
            json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD},
            timeout=TIMEOUT,
        )
    except requests.RequestException as exc:
        print(f"FAIL /auth/login: {exc.__class__.__name__}")
        return False
    if res.status_code != 200:
        print(f"FAIL /auth/login: HTTP {res.status_code}")
        return False
    session.headers["Authorization"] = f"Bearer {res.json()['access_token']}"
    stats = fetch(session, "/dashboard/stats")
    if stats is None:
        return False
    print(f"OK   /dashboard/stats: {stats}")
    return True


def main() -> int:
    with requests.Session() as session:
        ok = check_health(session)
        ok = check_doctor(session) and ok
        if ADMIN_PASSWORD:
            ok = check_dashboard(session) and ok
        else:
            print("SKIP /dashboard/stats: GESTOR_ADMIN_PASSWORD nao definido")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
