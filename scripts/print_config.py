from __future__ import annotations

import argparse
import json
import sys

from adminguard.core.config.loader import DEFAULT_CONFIG_PATH, load_config
from adminguard.core.errors import ConfigError


def main() -> int:
    ap = argparse.ArgumentParser(description="Print the effective adminguard configuration.")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to adminguard.json (missing file = defaults)")
    args = ap.parse_args()
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 2
    print(json.dumps(cfg.model_dump(mode="json"), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
