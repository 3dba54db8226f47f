#!/usr/bin/env python3
"""
Export JSON Schemas for the upstream extraction payload and review decisions.

This script exports the schemas consumed from collaborators and validates
example payloads.
"""

import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError

from src.intake.normalize import validate_payload
from src.intake.schema import ExtractionPayload, ReviewDecision


def export_json_schema(model, output_path: str):
    """Export the JSON Schema for a model."""
    schema = model.model_json_schema()

    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)

    print(f"✓ JSON Schema exported to: {output_file}")
    print(f"  Title: {schema['title']}")
    print(f"  Properties: {len(schema['properties'])} top-level fields")
    return schema


def validate_example_payloads():
    """Validate example payload JSON files against the schema."""
    examples_dir = Path("data/examples")
    example_files = list(examples_dir.glob("payload_*.json"))

    if not example_files:
        print("⚠ No example payload files found in data/examples/")
        return

    print(f"\n{'='*60}")
    print("Validating Example Payloads")
    print('='*60)

    valid_count = 0
    invalid_count = 0

    for example_file in sorted(example_files):
        print(f"\n📄 {example_file.name}")
        try:
            with open(example_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            payload = ExtractionPayload.model_validate(data)
            report = validate_payload(payload)

            print(f"  ✓ Valid")
            print(f"    Document type: {payload.document_type}")
            print(f"    Confidence: {report.confidence:.1f}")
            print(f"    Missing required: {', '.join(report.missing_required) or 'none'}")
            print(f"    Issues: {len(report.issues)}")

            valid_count += 1

        except (ValidationError, json.JSONDecodeError) as e:
            print(f"  ✗ Invalid: {e}")
            invalid_count += 1

    print(f"\n{'='*60}")
    print(f"Results: {valid_count} valid, {invalid_count} invalid")
    print('='*60)


def main():
    """Main entry point."""
    print("="*60)
    print("Claim Intake - JSON Schema Export")
    print("="*60)

    export_json_schema(ExtractionPayload, "data/payload_schema.json")
    export_json_schema(ReviewDecision, "data/review_decision_schema.json")

    validate_example_payloads()


if __name__ == "__main__":
    main()
