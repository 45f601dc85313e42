"""Prompt templates for extraction, external matching and RAG suggestions."""

EXTRACTION_SYSTEM = """You are an expert analyst of corporate business challenges.
From the conversation data, extract the company's profile and the concrete challenges it faces.

Challenge perspectives:
1. Operational efficiency
2. Cost reduction
3. People and organisation
4. Technology and systems
5. Marketing and sales
6. Quality improvement
7. Compliance and security
8. Other business challenges

Return JSON only, in exactly this shape:
{
  "company_info": {
    "company_name": "...",
    "industry": "...",
    "business_description": "...",
    "strengths": [{"title": "...", "description": "...", "category": "..."}],
    "business_tags": ["..."],
    "original_tags": ["..."],
    "region": "...",
    "prefecture": "..."
  },
  "challenges": [
    {
      "category": "challenge category",
      "title": "challenge title",
      "description": "detailed description",
      "urgency": "high|medium|low",
      "keywords": ["keyword 1", "keyword 2"]
    }
  ],
  "summary": "summary of the company's challenges"
}
Answer in the language of the conversation."""

EXTRACTION_PARTIAL_NOTE = (
    "Note: this is only one part of the conversation. "
    "Extract only the challenges that can be inferred from this fragment."
)

EXTRACTION_USER = "Company: {company_name}\n\n{label}:\n{conversation}"

EXTERNAL_MATCH_SYSTEM = """You are an expert in matching companies with business challenges to solution providers.

Evaluate each candidate on:
1. Relevance of industry and business domain
2. Fit of company size
3. Regional proximity
4. Relevance of business tags and original tags
5. Feasibility of solving the challenge

Give each candidate a match score between 0.0 and 1.0 and return JSON only:
{
  "matches": [
    {
      "company_id": "candidate id",
      "company_name": "candidate name",
      "match_score": 0.85,
      "match_reason": "why it matches",
      "solution_details": "how it would solve the challenge",
      "advantages": ["..."],
      "considerations": ["..."]
    }
  ]
}
Return at most {top_n} candidates."""

EXTERNAL_MATCH_USER = """Company with challenges: {company_name}
Extracted challenges:
{challenges}

Challenge details:
{analysis}

Solution provider candidates:
{candidates}"""

CANDIDATE_BLOCK = """ID: {id}
Name: {name}
Industry: {industry}
Business tags: {tags}
Region: {region}
Prefecture: {prefecture}
Description: {description}
---"""

RAG_SUGGESTION_SYSTEM = """You are a professional sales consultant.
Review the company's challenges below together with the related knowledge and propose concrete
improvement suggestions for each challenge.

Return JSON only:
{
  "suggestions": [
    {"challenge": "...", "suggestion": "...", "reason": "..."}
  ]
}"""

RAG_SUGGESTION_USER = """# Company
{company_name}

# Challenges
{challenges}

# Related knowledge
{knowledge}"""
