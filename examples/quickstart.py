"""Quick Start - QueryLab agent

Ask a question, ask a follow-up in the same session, then run a
two-section report.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from querylab import QueryLabAgent

agent = QueryLabAgent()
session_id = "quickstart"

# Question 1: new topic (full generation)
print("Question 1: Compare revenue between October and November 2024")
print("-" * 60)

result = agent.ask(
    "Compare revenue between October and November 2024",
    session_id=session_id,
    execute=False,  # Set to True to run on BigQuery
)

if result["success"]:
    print(f"✓ SQL ({result['source']}, {result['question_type']}):")
    print(result["sql"])
else:
    print(f"✗ Error: {result['message']}")

print("\n" + "=" * 60 + "\n")

# Question 2: follow-up (cheap refinement of the previous SQL)
print("Question 2: now show it by publisher")
print("-" * 60)

result = agent.ask("now show it by publisher", session_id=session_id, execute=False)

if result["success"]:
    print(f"✓ SQL ({result['source']}, confidence {result['confidence']}):")
    print(result["sql"])
    for change in result["changes"]:
        print(f"  - {change}")
else:
    print(f"✗ Error: {result['message']}")

print("\n" + "=" * 60 + "\n")

# Report: independent sections run concurrently (requires BigQuery setup)
print("Report: revenue and requests by month")
print("-" * 60)

report = agent.run_report({
    "revenue": "SELECT month, SUM(rev) AS revenue FROM `gcpp-check.GI_publisher.pub_data` GROUP BY month",
    "requests": "SELECT month, SUM(req) AS requests FROM `gcpp-check.GI_publisher.pub_data` GROUP BY month",
})

for name, section in report["sections"].items():
    if section["success"]:
        print(f"✓ {name}: {section['row_count']} rows "
              f"({section['retry_info']['total_attempts']} attempt(s))")
    else:
        print(f"✗ {name}: {section.get('message') or section.get('error')}")

agent.shutdown()
