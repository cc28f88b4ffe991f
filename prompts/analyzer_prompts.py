"""Prompts used by the finalization pipeline stages."""

# =============================================================================
# Screen Canonicalization
# =============================================================================

SCREEN_CANONICALIZATION_PROMPT = """You are analyzing screen types from a web browsing session.

Given these URL pattern groups:
{groups_json}

Your task:
1. Identify the logical SCREEN TYPE for each group
2. Groups with similar purposes should have the SAME canonical label
3. Use GENERIC names (e.g., "Product Detail Page" not "iPad Detail Page")
4. Consider URL patterns as strong hints:
   - /dp/* or /product/* → Product Detail Page
   - /cart/* → Shopping Cart
   - /search or /s?k=* → Search Results
   - /checkout/* → Checkout Page

Return JSON (no markdown):
{{
  "screenTypes": [
    {{
      "groupIds": [0, 2],
      "canonicalLabel": "Product Detail Page",
      "description": "Page showing details of a single product"
    }},
    {{
      "groupIds": [1],
      "canonicalLabel": "Shopping Cart",
      "description": "Page showing items in the shopping cart"
    }}
  ]
}}"""


# =============================================================================
# Instance Segmentation
# =============================================================================

INSTANCE_SEGMENTATION_PROMPT = """You are analyzing a sequence of user actions to identify distinct WORKFLOW INSTANCES.

A workflow instance is a complete attempt to accomplish a single goal (e.g., "search for a product and add to cart").

Events in this session:
{events_json}

Your task:
1. Group these events into distinct workflow instances
2. Each instance should have:
   - A clear GOAL (what the user was trying to do)
   - A start event and end event
   - Whether it succeeded (completed the goal)
3. Events can only belong to ONE instance
4. Look for patterns like:
   - Search → Browse results → View item → Add to cart (shopping workflow)
   - Fill form → Submit (form workflow)
   - Navigate → Read → Navigate back (browsing workflow)

Return JSON (no markdown):
{{
  "instances": [
    {{
      "goal": "Search for iPad and add to cart",
      "startEventIndex": 0,
      "endEventIndex": 4,
      "succeeded": true
    }},
    {{
      "goal": "Search for Christmas tree and browse",
      "startEventIndex": 5,
      "endEventIndex": 8,
      "succeeded": true
    }}
  ]
}}

Rules:
- Cover ALL events (no gaps)
- Instances should not overlap
- Use meaningful goal descriptions
- If unsure, group related screens together"""


# =============================================================================
# Template Synthesis
# =============================================================================

TEMPLATE_SYNTHESIS_PROMPT = """You are creating a REUSABLE workflow template from a specific execution.

Goal of this workflow: "{goal}"

Events that occurred:
{events_json}

Your task:
1. Create a GENERIC workflow template that could be reused with different inputs
2. Identify INPUT PARAMETERS - values the user provided that would vary between executions:
   - Derive them ONLY from observed typedText values and selected options
   - Search queries, form inputs, quantities, selections
   - Give them generic names like "search_query", "quantity", "item_name"
3. Identify OUTPUT PARAMETERS - values extracted during execution:
   - Product names clicked, prices seen, confirmation messages
4. Create TEMPLATE STEPS with {{placeholders}} for parameters
5. Every step needs a CONCRETE action description naming the element acted on
   (e.g. "Click the 'Add to Cart' button", never "Perform action" or "Click")

Return JSON (no markdown):
{{
  "template": {{
    "name": "Search and Add to Cart",
    "description": "Search for a product and add it to the shopping cart",
    "inputs": {{
      "search_query": {{
        "type": "string",
        "description": "The search term to look for",
        "required": true
      }},
      "quantity": {{
        "type": "number",
        "description": "Number of items to add",
        "required": false,
        "default": 1
      }}
    }},
    "outputs": {{
      "product_name": {{
        "type": "string",
        "description": "Name of the product that was added"
      }}
    }},
    "steps": [
      {{
        "stepNumber": 1,
        "screenPattern": "Search Results",
        "actionTemplate": "Enter {{search_query}} in search box",
        "usesInputs": ["search_query"],
        "extracts": {{}}
      }},
      {{
        "stepNumber": 2,
        "screenPattern": "Product Detail Page",
        "actionTemplate": "Click on a product from search results",
        "usesInputs": [],
        "extracts": {{
          "product_name": {{ "from": "clicked_text" }}
        }}
      }}
    ]
  }},
  "instanceValues": {{
    "inputs": {{
      "search_query": "iPad",
      "quantity": 3
    }},
    "outputs": {{
      "product_name": "iPad Pro 11-inch"
    }}
  }}
}}

Rules:
- Template name and description should be GENERIC (not "Search for iPad")
- Parameter types are one of: string, number, boolean
- Parameter names should be snake_case
- Every input mentioned in steps must be defined in inputs
- Extract values that would be useful to know after the workflow completes"""
