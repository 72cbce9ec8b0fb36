from datetime import datetime, timedelta, timezone
from pathlib import Path
import argparse
import json
import pickle
import random

from recmail import config
from recmail.baseline_model import SkuAffinityModel


def main() -> None:
    parser = argparse.ArgumentParser(description="Write demo recipients, SKUs and a scoring model.")
    parser.add_argument("--data-dir", type=Path, default=config.DATA_DIR)
    parser.add_argument("--recipients", type=int, default=25)
    parser.add_argument("--skus", type=int, default=40)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    rng = random.Random(args.seed)
    data_dir: Path = args.data_dir
    models_dir = data_dir / "metrics" / config.MODELS_PREFIX
    models_dir.mkdir(parents=True, exist_ok=True)

    recipients_path = data_dir / config.RECIPIENTS_PATH.name
    with recipients_path.open("w", encoding="utf-8") as f:
        f.write("id,email\n")
        for i in range(1, args.recipients + 1):
            f.write(f"{i},customer{i}@example.com\n")
    print(f"Wrote {args.recipients} recipients to {recipients_path}")

    skus = [1000 + i for i in range(args.skus)]
    skus_path = data_dir / config.SKUS_PATH.name
    with skus_path.open("w", encoding="utf-8") as f:
        f.write("sku\n")
        for sku in skus:
            f.write(f"{sku}\n")
    print(f"Wrote {len(skus)} SKUs to {skus_path}")

    now = datetime.now(timezone.utc)
    # two evaluated models so selection has something to choose between
    for days_ago, auc in [(3, 0.71), (1, 0.78)]:
        trained_at = now - timedelta(days=days_ago)
        name = f"sku-affinity-{trained_at:%Y%m%d}"
        model = SkuAffinityModel({sku: rng.random() for sku in skus}, seed=rng.randrange(1 << 16))

        model_key = f"{config.MODELS_PREFIX}{name}.pkl"
        (data_dir / "metrics" / model_key).write_bytes(pickle.dumps(model))

        record = {
            "Id": f"{name}-eval",
            "ModelName": "SkuAffinity",
            "FileName": model_key,
            "AUC": auc,
            "Accuracy": round(auc - 0.05, 4),
            "Binary": True,
            "TrainedAtUtc": trained_at.isoformat(),
        }
        with (models_dir / f"{name}.json").open("w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        print(f"Wrote model {model_key} (AUC={auc})")


if __name__ == "__main__":
    main()
