import json
import os

ROOT = os.path.dirname(os.path.abspath(__file__))
DB_PATH = os.path.join(ROOT, 'pos.sqlite')  # can be overridden via CLI/env (see agent.main())
CONFIG_PATH = os.path.join(ROOT, 'config.json')  # can be overridden via CLI/env (see agent.main())

DEFAULT_CONFIG = {
    'api_base_url': 'http://localhost:3000',
    'branch_id': None,
    'device_id': '',
    # Every server call is aborted after this budget and treated as a failure.
    'request_timeout_s': 30,
    # Health probes should answer fast; a slow server is as bad as a dead one for the register.
    'health_timeout_s': 5,
    'connectivity_poll_s': 5,
    # 1 loyalty point per N currency units of the grand total.
    'loyalty_points_divisor': 10,
}


def load_config(path=None):
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        save_config(DEFAULT_CONFIG, path)
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    cfg = {**DEFAULT_CONFIG, **data}
    # Allow ops to override without rewriting the on-disk config.
    if os.environ.get("POS_API_BASE_URL"):
        cfg["api_base_url"] = os.environ["POS_API_BASE_URL"]
    if os.environ.get("POS_BRANCH_ID"):
        try:
            cfg["branch_id"] = int(os.environ["POS_BRANCH_ID"])
        except ValueError:
            pass
    if os.environ.get("POS_DEVICE_ID"):
        cfg["device_id"] = os.environ["POS_DEVICE_ID"]
    return cfg


def save_config(data, path=None):
    with open(path or CONFIG_PATH, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
