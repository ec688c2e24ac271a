"""
Prompt templates for process and single-infographic generation.

Templates use ``str.format`` placeholders; values are never re-parsed, so
generated text containing braces is safe to insert.
"""

# ---------- Process mode ----------

PROCESS_DISCOVERY_PROMPT = """
#Role
You are a multilingual scientific expert specialized in decomposing complex processes into clear, sequential steps suitable for {target_audience}.

#Task
Analyze this scientific process: "{process}"

Determine the optimal way to explain it through a sequence of visual steps. Return a JSON object with:
- "process_name": the name of the process
- "domain": the scientific domain it belongs to (e.g. "Biology", "Physics")
- "overview_text": a 200-word overview of the entire process that provides context
- "suggested_steps": the optimal number of steps (integer between 3 and 8)
- "step_titles": one clear, action-oriented title per step, in order (exactly suggested_steps titles)

#Specifics
- Match the step count to the complexity of the process and the maturity of {target_audience}
- Steps must have clear causal relationships and a logical flow
- Steps must be MUTUALLY EXCLUSIVE: no overlapping information, no concept, object or event repeated across steps
- Think of steps as chapters of a book, each covering a distinct part of the story
- Adopt a {tone} tone
- **IMPORTANT: All output content must be strictly in {language}.**

#Context
Each step will be illustrated by its own infographic, showing ONLY what happens in that step.
"""

PROCESS_STEP_EXPLANATION_PROMPT = """
#Role
You are a multilingual scientific educator explaining individual steps of a sequential process to {target_audience}.

#Task
Write the explanation for Step {step_number} of {total_steps} in the process "{process_name}".
The step title is: "{step_title}"

Context from the overview and previous steps:
{previous_context}

Return a JSON object with:
- "description": a 200-250 word explanation of what happens in this specific step
- "key_events": 2 or 3 short phrases naming the key phenomena of this step, for visual emphasis

#Specifics
- Focus ONLY on the events and mechanisms within this step's timeframe
- Briefly reference how the previous step led here and how this step enables the next one
- DO NOT repeat information already covered in previous steps
- DO NOT describe events that belong to future steps
- Explain the WHY and HOW, not just the WHAT, with analogies suited to {target_audience}
- key_events must be unique to this step
- Adopt a {tone} tone
- **IMPORTANT: All output content must be strictly in {language}.**
"""

STAGE_ONE_TEMPLATE_INSTRUCTIONS = """
**DESIGN TEMPLATE (Step 1 defines it for the whole series):**
This is the first image of a sequence of {total_steps}. Invent the design template that every later step will replicate exactly, and document each decision precisely in your plan:
- Title text: font style, font size, a concrete text color (hex code), background treatment, a fixed position and optional effects (shadow, outline)
- Step indicator badge "STEP X/{total_steps}": one shape, background color, border, text styling, a fixed position and a fixed size
- Color palette: 3 to 5 entries mapping a concept to a color (e.g. "oxygen = #E53E3E")
- Illustration technique: line weight, shading, lighting direction, texture
- Layout template: where the title, the badge and the callouts sit, and the main content area
- Text style rules for labels and for explanatory sentences
Only the title text, the badge number and the step content may change in later steps.
"""

LATER_STAGE_TEMPLATE_INSTRUCTIONS = """
**DESIGN TEMPLATE (defined by Step 1, replicate EXACTLY):**
Below is the complete visual plan of Step 1. Extract and replicate every design element exactly: title styling, step badge styling, color palette, illustration technique, layout template and text style rules.
Change ONLY the badge number (STEP {step_number}/{total_steps}) and the step-specific content.

=== STEP 1 PLAN (verbatim) ===
{template_text}
=== END OF STEP 1 PLAN ===
"""

EXCLUSION_DIGEST_INSTRUCTIONS = """
**ALREADY ILLUSTRATED IN PREVIOUS STEPS:**
{digest}
Do not re-illustrate the above; show only new content for this stage.
"""

PROCESS_STEP_PLAN_PROMPT = """
## **Task**
Create a detailed visual plan for Step {step_number} of {total_steps} in the process "{process_name}".
This image is part of a sequence and must stay visually consistent with it.

{consistency_block}

**Step Details:**
- Title: {step_title}
- Description: {step_description}
- Key Events: {key_events}

## **Guidelines**
1. Show the transformation that happens during this step, with clear inputs and outputs where they apply
2. Highlight the key events with callout boxes, circles or arrows
3. Add 3 to 5 unique labels for key components and 4 to 5 short explanatory sentences (8-12 words each)
4. Text hierarchy: title (largest), explanatory sentences (medium), labels (smaller)
5. Never repeat a label or a piece of information, within this image or from other steps
6. Create one clear focal point on the most important transformation

## **Context**
- Process: {process_name}
- Domain: {domain}
- Target Audience: {target_audience}
- Visual Style: {visual_style}
- Step Number: {step_number} / {total_steps}

**IMPORTANT: The plan must be written in {language}. All text displayed on the infographic MUST be in {language}.**
"""

IMAGE_RENDER_INSTRUCTIONS = """Render the following plan as one finished educational infographic image.
Reproduce every text element exactly as written, legibly and without spelling mistakes.
Visual style: {style}

{plan}
"""


# ---------- Single infographic mode ----------

FACT_GENERATION_PROMPT = """
#Role
You are a multilingual scientific expert specialized in scientific outreach for {target_audience}.

#Task
Generate 3 interesting, captivating and surprising scientific facts in the field of: {domain}
For each fact provide the scientific domain, a title of 2 or 3 words and a 250-word text summarizing its essence.

#Specifics
- Facts must be scientifically accurate and verifiable
- Suitable for {target_audience}, with a {tone} tone
- Avoid technical jargon unless it is explained
- **IMPORTANT: WRITTEN IN {language}**

#Context
These facts will become educational infographics.
"""

CONCEPT_EXPLANATION_PROMPT = """
#Role
You are a multilingual scientific expert specialized in scientific outreach for {target_audience}.

#Task
The user wants an explanation about a specific concept: "{concept}".
Write a single, rigorous yet fascinating scientific entry that can be turned into an infographic, as a JSON object with:
- "domain": the general scientific domain of the concept
- "title": a catchy title (2 to 4 words)
- "text": a 250-word explanation

#Specifics
- Accurate but accessible to {target_audience}; use analogies if helpful
- Focus on the visual aspects of the concept
- Adopt a {tone} tone
- **IMPORTANT: The output content must be strictly in {language}.**
"""

INFOGRAPHIC_PLAN_PROMPT = """
## **Task**
Create a detailed plan for a captivating infographic based on a short scientific text:
1. Identify the main scientific fact and the key elements to highlight
2. Choose a visual structure that captures the attention of {target_audience}
3. Apply this visual style: {visual_style}
4. Suggest illustrations, icons and diagrams that complement the text
5. Reorganize the text so it is understandable at a glance, without repetition
6. Clearly specify every text element to display, as it must be rendered accurately

**IMPORTANT: The plan must be written in {language}. Text displayed on the image MUST be in {language}.**

### **Scientific Text:**
Scientific Domain: {domain}
Title: {title}
Text:
{text}
"""
