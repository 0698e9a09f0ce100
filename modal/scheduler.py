"""Invoice ingestion scheduler - recurring and on-demand runs of the payables pipeline."""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import modal

# Create Modal app
app = modal.App("payables-ingestion")

# Create image with all dependencies
image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "psycopg[binary]==3.2.3",
        "openai==1.59.5",
        "pydantic==2.12.4",
        "requests==2.32.3",
        "pdfplumber==0.11.4",
        "python-dotenv==1.0.1",
        "langfuse>=3.0,<4",
    )
    .add_local_dir(Path(__file__).parent.parent / "src" / "payables", "/root/payables")
)

# Modal secrets and volumes
secrets = [modal.Secret.from_name("payables-secrets")]
metrics_volume = modal.Volume.from_name("payables-metrics", create_if_missing=True)

logger = logging.getLogger(__name__)


def run_ingestion(trigger: str) -> dict:
    """Run one ingestion pass and record its summary on the metrics volume.

    Both triggers go through here so they behave identically.

    Args:
        trigger: "scheduled" or "on-demand", recorded with the metrics

    Returns:
        dict: Run summary without per-email outcomes
    """
    sys.path.insert(0, "/root")

    from payables.pipeline import process_invoices

    logging.basicConfig(level=logging.INFO)

    logger.info("=" * 80)
    logger.info(f"INGESTION STARTED ({trigger})")
    logger.info("=" * 80)

    summary = process_invoices()

    logger.info(
        f"Ingestion complete: {summary.invoices_created} created, "
        f"{summary.skipped} skipped, {len(summary.errors)} errors"
    )

    result = summary.model_dump(mode="json", exclude={"outcomes"})

    metrics_dir = Path("/metrics")
    metrics_dir.mkdir(exist_ok=True)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    metrics_file = metrics_dir / f"ingestion_{timestamp}.json"

    with open(metrics_file, "w") as f:
        json.dump(
            {"trigger": trigger, "timestamp": datetime.now(timezone.utc).isoformat(), **result},
            f,
            indent=2,
        )

    metrics_volume.commit()
    logger.info(f"Wrote metrics to {metrics_file}")

    return result


@app.function(
    image=image,
    secrets=secrets,
    volumes={"/metrics": metrics_volume},
    timeout=1800,
    schedule=modal.Cron("*/30 * * * *"),
)
def scheduled_ingestion() -> dict:
    """Recurring run every 30 minutes."""
    return run_ingestion("scheduled")


@app.function(
    image=image,
    secrets=secrets,
    volumes={"/metrics": metrics_volume},
    timeout=1800,
)
def process_invoices_now() -> dict:
    """On-demand run, same behavior as the scheduled one."""
    return run_ingestion("on-demand")


@app.local_entrypoint()
def main():
    """Local entrypoint: trigger an on-demand run."""
    print("Triggering on-demand invoice ingestion")
    result = process_invoices_now.remote()
    print(f"\nIngestion Result: {json.dumps(result, indent=2)}")
