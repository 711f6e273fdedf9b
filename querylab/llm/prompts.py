"""Prompt templates for LLM interactions."""

import json
from typing import Dict, Iterable, List, Mapping, Optional

from ..knowledge.models import BusinessRule, TableMetadata

BIGQUERY_CONSTRAINTS = """**BIGQUERY CONSTRAINTS:**
- Use backticks for table names: `gcpp-check.GI_publisher.pub_data`
- Use SAFE_DIVIDE for division: SAFE_DIVIDE(a, b)
- Date functions: DATE_TRUNC(date, WEEK/MONTH), DATE_SUB(date, INTERVAL n DAY)
- NULL handling: COALESCE(), NULLIF()
- No tuple IN subqueries: (col1, col2) IN (...) is NOT supported
"""

OUTPUT_FORMAT = """**OUTPUT FORMAT:**
Return a JSON object with:
{
  "reasoning": {
    "step1_understanding": { "question_type": "...", "entities": [...], "time_periods": [...], "key_insight": "..." },
    "step2_breakdown": { "logic_steps": [...], "set_operations": "..." },
    "step3_constraints": { "needs_join": true/false, "date_range": "...", "null_handling": "..." },
    "step4_sql_plan": { "structure": "...", "ctes": [...], "main_select": "...", "order_by": "..." }
  },
  "understanding": { "summary": "...", "entities": [...], "filters": [...], "timeRange": "...", "confidence": 0.0-1.0 },
  "sql": "SELECT ...",
  "warnings": []
}"""


class PromptTemplates:
    """Collection of prompt templates for SQL generation and repair."""

    REFINEMENT_SYSTEM = "You are a BigQuery SQL expert. Respond only with valid JSON."

    @staticmethod
    def schema_reference(
        tables: Iterable[TableMetadata],
        rules: Iterable[BusinessRule] = (),
    ) -> str:
        """Render tables, columns and business rules as a compact reference.

        Args:
            tables: Table metadata from the knowledge base
            rules: Business rules to list after the schema

        Returns:
            Reference text shared by refinement and repair prompts
        """
        lines: List[str] = ["TABLES:"]
        for table in tables:
            lines.append(f"- `{table.full_path}` ({table.table_type}): {table.description}")
            for column in table.columns:
                description = f": {column.description}" if column.description else ""
                lines.append(f"    {column.name} {column.type}{description}")
            for hint in table.join_hints:
                lines.append(f"    {hint.join_type} {hint.to_table} ON {hint.on_condition}")

        rules = list(rules)
        if rules:
            lines.append("")
            lines.append("BUSINESS RULES:")
            for rule in rules:
                lines.append(f"- {rule.rule_name}: {rule.description}")

        return "\n".join(lines)

    @staticmethod
    def generation_system(
        question: str,
        knowledge_context: str,
        conversation_summary: Optional[str] = None,
        team_context: Optional[str] = None,
    ) -> str:
        """System prompt for full SQL generation.

        Args:
            question: The user's question
            knowledge_context: Rendered knowledge context
            conversation_summary: Summary of the session so far
            team_context: Team to PIC mapping text

        Returns:
            Formatted prompt
        """
        prompt = f"""You are a BigQuery SQL expert for the GCPP-Check analytics platform.

**CRITICAL: LANGUAGE DETECTION**
Detect the language of the user's question and ALWAYS respond in the SAME language.

**USER QUESTION:** "{question}"

**KNOWLEDGE GRAPH CONTEXT:**
{knowledge_context}

**YOUR TASK:**
1. Use the detected concepts and schema above to generate SQL
2. Follow the suggested patterns if applicable
3. Apply business rules where relevant
4. Learn from similar examples

{OUTPUT_FORMAT}


{BIGQUERY_CONSTRAINTS}"""

        if team_context:
            prompt += f"\n\n**TEAM CONTEXT:**\n{team_context}"

        if conversation_summary:
            prompt += f"\n\n{conversation_summary}"

        return prompt

    @staticmethod
    def generation_user(question: str) -> str:
        return f'Generate SQL for: "{question}"'

    @staticmethod
    def refinement(
        new_question: str,
        previous_question: str,
        previous_sql: str,
        schema_reference: str,
    ) -> str:
        """Prompt for refining the previous SQL to answer a follow-up."""
        return f"""You are a BigQuery SQL expert refining an existing query.

**PREVIOUS QUESTION:** "{previous_question}"

**WORKING SQL:**
```sql
{previous_sql}
```

**NEW REQUEST:** "{new_question}"

**SCHEMA AND RULES:**
{schema_reference}

**REFINEMENT INSTRUCTIONS:**
- Modify the SQL to fulfill the new request
- Make minimal changes - only update what's necessary
- Keep the same table references and structure if possible
- Preserve working logic that doesn't need to change
- When adding new metrics, use the formulas specified above

**RESPONSE FORMAT (JSON):**
{{
  "sql": "SELECT ... (the modified SQL)",
  "changes": ["Description of change 1", "Description of change 2"]
}}

Respond with valid JSON only."""

    @staticmethod
    def sql_fix_system(
        schema_reference: str,
        valid_columns: Mapping[str, Iterable[str]],
        column_fixes: Mapping[str, str],
        team_context: str = "",
    ) -> str:
        """System prompt for the execution-repair call (plain SQL answer)."""
        columns = "\n".join(
            f"- {table}: {', '.join(names)}" for table, names in valid_columns.items()
        )
        fixes = "\n".join(f"- {wrong} → {right}" for wrong, right in column_fixes.items())

        return f"""You are a BigQuery SQL error fixer. Fix the SQL query based on the error.

{schema_reference}
{team_context}

VALID COLUMNS:
{columns}

COMMON FIXES:
{fixes}

Respond with ONLY the fixed SQL query, no explanation."""

    @staticmethod
    def sql_fix_user(sql: str, error: str, error_context: str) -> str:
        return f"""Fix this SQL query:

{sql}

Error: {error}

{error_context}

Return ONLY the fixed SQL."""

    @staticmethod
    def error_analysis_system(
        schema_reference: str,
        valid_columns: Mapping[str, Iterable[str]],
    ) -> str:
        """System prompt for analysing a failure: fix it or ask the user."""
        columns = "\n".join(
            f"- Valid columns for {table}: {', '.join(names)}"
            for table, names in valid_columns.items()
        )

        return f"""You are a BigQuery SQL expert. Analyze errors and fix SQL queries.

**CRITICAL: LANGUAGE DETECTION**
Detect the language of the user's original question and ALWAYS respond in the SAME language:
- Vietnamese question → Vietnamese explanation/clarifying question
- English question → English explanation/clarifying question
- Japanese/Indonesian/etc → Same language response

{schema_reference}

Remember:
{columns}
- Common mistakes:
  - mname → use medianame
  - pname → use pubname
  - team → use pic IN (...)
  - quarter → does NOT exist! Calculate: CEIL(month / 3) AS quarter
"""

    @staticmethod
    def error_analysis_user(question: str, sql: str, error: str) -> str:
        return f"""Original question: "{question}"

The previous SQL failed with this error:
ERROR: {error}

Previous SQL that failed:
```sql
{sql}
```

IMPORTANT: Analyze the error and either:
1. Fix the SQL if you understand the problem (column name, syntax, etc.)
2. OR if you need more information from the user, generate a clarifying question

Response format (JSON):
{{
  "canFix": true/false,
  "fixedSql": "SELECT ... (only if canFix is true)",
  "explanation": "Brief explanation of what was wrong and how you fixed it",
  "clarifyingQuestion": "Question for user (only if canFix is false)"
}}

Analyze and respond with JSON."""

    PLAN_SYSTEM = "You are a helpful BigQuery SQL expert. Respond in JSON format with a simple plan."
    PLAN_UPDATE_SYSTEM = (
        "You are a helpful BigQuery SQL expert. Respond in JSON format with an updated plan."
    )
    REASONING_SYSTEM = (
        "You are a helpful AI assistant that refines SQL reasoning based on user feedback."
    )

    REASONING_STEPS = {
        1: "Step 1: Understanding the Question",
        2: "Step 2: Breaking Down the Logic",
        3: "Step 3: Identifying Constraints",
        4: "Step 4: Planning SQL Structure",
    }

    @staticmethod
    def plan(
        question: str,
        team_context: Optional[str] = None,
        conversation_history: Optional[str] = None,
    ) -> str:
        """Ask for a short numbered plan, in the question's language, before any SQL."""
        team = f"\n\nTeam Context:\n{team_context}" if team_context else ""
        history = f"\n\nPrevious conversation:\n{conversation_history}" if conversation_history else ""

        return f"""You are a BigQuery SQL expert helping users query their data.

**CRITICAL: LANGUAGE DETECTION**
Detect the language of the user's question and RESPOND IN THE SAME LANGUAGE:
- Vietnamese question → Vietnamese response
- English question → English response
- Japanese/Indonesian/other → Same language response

User's question: "{question}"

Your task: Explain your approach in a simple, numbered plan (3-7 steps). Be concise and clear. Use the SAME language as the user's question.

Example format (English):
"I understand you want to find top 5 products by revenue in 2025 with monthly breakdown. Here's my plan:

1. Calculate monthly revenue for each product in 2025 (SUM revenue per product per month)
2. Calculate total revenue per product (sum across all months)
3. Rank products by total revenue
4. Select top 5 products
5. Show monthly breakdown for those 5 products only

Does this approach look correct?"
{team}{history}

Important:
- Keep it simple and conversational
- Use numbered list format
- Ask user for confirmation at the end
- Return as JSON: {{ "plan": "your markdown plan here", "confidence": 0.0-1.0 }}"""

    @staticmethod
    def plan_update(
        question: str,
        current_plan: str,
        feedback: str,
        conversation_history: Optional[str] = None,
    ) -> str:
        history = f"Previous conversation:\n{conversation_history}\n" if conversation_history else ""

        return f"""You are refining a BigQuery SQL plan based on user feedback.

**CRITICAL: LANGUAGE DETECTION**
Detect the language of the user's original question and feedback, then RESPOND IN THE SAME LANGUAGE.

Original question: "{question}"

Current plan:
{current_plan}

User feedback: "{feedback}"

{history}
Your task: Update the plan based on user's feedback. Keep the same numbered format. Use the SAME LANGUAGE as the user.

Return as JSON: {{ "plan": "updated markdown plan in user's language", "confidence": 0.0-1.0 }}"""

    @staticmethod
    def sql_from_plan_system(
        schema_reference: str,
        valid_columns: Mapping[str, Iterable[str]],
        team_context: Optional[str] = None,
    ) -> str:
        """System prompt for turning an agreed plan into SQL."""
        columns = "\n".join(
            f"- {table}: {', '.join(names)}" for table, names in valid_columns.items()
        )

        return f"""You are a BigQuery SQL expert. Write the SQL that carries out the user's agreed plan.

{schema_reference}
{team_context or ""}

**VALID COLUMN NAMES (use ONLY these):**
{columns}

**CRITICAL INSTRUCTIONS:**
- Use ONLY `gcpp-check.GI_publisher.pub_data` (alias p) and `gcpp-check.GI_publisher.updated_product_name` (alias u)
- For revenue use p.rev; for products JOIN updated_product_name ON p.zid = u.zid and use u.product
- There is NO team column: filter by pic IN (...) using the team mapping
- Follow the plan step by step, one CTE per step where it helps

{BIGQUERY_CONSTRAINTS}
**RESPONSE FORMAT (JSON):**
{{
  "sql": "SELECT ...",
  "warnings": []
}}"""

    @staticmethod
    def sql_from_plan_user(question: str, plan: str) -> str:
        return f"""Generate BigQuery SQL based on this plan:

Question: "{question}"

Plan:
{plan}"""

    @staticmethod
    def reasoning_refinement(
        question: str,
        reasoning: Mapping[str, object],
        step: int,
        feedback: str,
        conversation_history: Optional[str] = None,
    ) -> str:
        """Revise the four-step reasoning after feedback on one step."""
        step_name = PromptTemplates.REASONING_STEPS[step]

        return f"""You are refining the reasoning for a BigQuery SQL generation task.

**Original Question:** {question}

**Current Reasoning (all 4 steps):**
{json.dumps(reasoning, indent=2, ensure_ascii=False)}

**User Feedback on {step_name}:**
"{feedback}"

**Conversation History:**
{conversation_history or "(none)"}

**Your Task:**
1. Acknowledge the user's feedback
2. Explain what you will change in {step_name}
3. Return the COMPLETE refined reasoning (all 4 steps, with changes applied to step {step})

**Output JSON Format:**
{{
  "aiResponse": "I understand your feedback. I will adjust step {step} by...",
  "reasoning": {{
    "step1_understanding": {{ ... }},
    "step2_breakdown": {{ ... }},
    "step3_constraints": {{ ... }},
    "step4_sql_plan": {{ ... }}
  }},
  "confidence": 0.0-1.0
}}"""

    @staticmethod
    def team_context(teams: Dict[str, Dict[str, object]]) -> str:
        """Team to PIC filter mapping (there is no team column in pub_data)."""
        mappings = []
        for team_id, team in teams.items():
            pics = list(team.get("pics") or [])
            if not pics:
                continue
            pic_list = ", ".join(f"'{p}'" for p in pics)
            mappings.append(f"Team {team_id} ({team.get('name', team_id)}) → WHERE pic IN ({pic_list})")

        if not mappings:
            return ""

        joined = "\n".join(mappings)
        return f"""IMPORTANT: There is NO 'team' column in the BigQuery pub_data table!
Team names must be converted to PIC filters:

{joined}

- WRONG: WHERE team = 'WEB_GV'
- RIGHT: WHERE pic IN (...) with the PIC list from above"""
