"""
Conversational question generator for MAX Visibility assessments
Builds buyer-style prompts tailored to one company from a weighted template bank
"""
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config.app_config import get_config

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("direct", "indirect", "comparison", "recommendation", "explanatory")

class QuestionGenerationError(Exception):
    pass

@dataclass
class QuestionTemplate:
    id: str
    template: str
    type: str
    variables: List[str]
    weight: float = 1.0
    category: str = ""

@dataclass
class CompanyContext:
    name: str
    domain: str
    description: Optional[str] = None
    industry: Optional[str] = None
    brand_name: Optional[str] = None
    competitors: List[str] = field(default_factory=list)
    size: str = "medium"

def _t(id, template, type, variables, weight, category):
    return QuestionTemplate(id, template, type, variables, weight, category)

TEMPLATES = [
    _t('direct-eval-01', "Help me understand what {company} does and if it's right for my {use_case} needs",
       'direct', ['company', 'use_case'], 1.0, 'evaluation'),
    _t('direct-eval-02', "I'm evaluating {company} for our {company_size} company - what should I know about their pricing and features?",
       'direct', ['company', 'company_size'], 1.0, 'evaluation'),
    _t('direct-comp-01', "Compare {company} to {competitor1} and {competitor2} for enterprise use",
       'direct', ['company', 'competitor1', 'competitor2'], 0.9, 'comparison'),
    _t('direct-decision-01', "What are the pros and cons of choosing {company} over alternatives in the {category} space?",
       'direct', ['company', 'category'], 1.0, 'decision'),
    _t('direct-approach-01', "Walk me through {company}'s approach to {problem_space} and why it matters",
       'direct', ['company', 'problem_space'], 0.8, 'explanation'),
    _t('direct-choice-01', "Is {company} a good choice for {use_case}? What are the alternatives I should consider?",
       'direct', ['company', 'use_case'], 1.0, 'choice'),
    _t('direct-investment-01', "Is {company} worth the investment for a {company_size} company? What's the typical ROI?",
       'direct', ['company', 'company_size'], 0.9, 'investment'),
    _t('direct-implement-01', "If I choose {company}, what should I know about implementation and getting started?",
       'direct', ['company'], 0.8, 'implementation'),

    _t('indirect-options-01', "I need to choose the best {category} platform for my startup - what are my options?",
       'indirect', ['category'], 1.0, 'options'),
    _t('indirect-criteria-01', "What should I look for when evaluating {category} tools for enterprise use?",
       'indirect', ['category'], 1.0, 'criteria'),
    _t('indirect-landscape-01', "Help me understand the landscape of {market} solutions and key players",
       'indirect', ['market'], 0.9, 'landscape'),
    _t('indirect-building-01', "I'm building a {use_case} solution - what tools and platforms should I consider?",
       'indirect', ['use_case'], 1.0, 'building'),
    _t('indirect-tradeoffs-01', "What are the trade-offs between different approaches to {problem_space}?",
       'indirect', ['problem_space'], 0.8, 'tradeoffs'),
    _t('indirect-recommend-01', "Recommend the top {category} solutions for {company_size} companies in {year}",
       'indirect', ['category', 'company_size'], 1.0, 'recommendations'),
    _t('indirect-budget-01', "I have a {budget} budget for {category} tools - what do you recommend?",
       'indirect', ['budget', 'category'], 0.9, 'budget'),
    _t('indirect-role-01', "I'm a {role} at a {company_size} company looking for {solution_type} - what should I consider?",
       'indirect', ['role', 'company_size', 'solution_type'], 0.8, 'role-specific'),

    _t('comp-detailed-01', "Create a detailed comparison of {company} vs {competitor1} vs {competitor2}",
       'comparison', ['company', 'competitor1', 'competitor2'], 1.0, 'detailed'),
    _t('comp-usecase-01', "Compare {company} and {competitor1} for {use_case} - which is better?",
       'comparison', ['company', 'competitor1', 'use_case'], 1.0, 'use-case'),
    _t('comp-pricing-01', "How does {company}'s pricing compare to {competitor1} and other {category} tools?",
       'comparison', ['company', 'competitor1', 'category'], 0.9, 'pricing'),
    _t('comp-features-01', "Compare the features and capabilities of {company} versus {competitor1}",
       'comparison', ['company', 'competitor1'], 1.0, 'features'),
    _t('comp-enterprise-01', "{company} vs {competitor1} for enterprise customers - comprehensive comparison",
       'comparison', ['company', 'competitor1'], 0.9, 'enterprise'),

    _t('rec-budget-01', "I have {budget} to spend on {category} - what do you recommend and why?",
       'recommendation', ['budget', 'category'], 1.0, 'budget-based'),
    _t('rec-best-01', "What's the best {category} solution for {use_case} in {year}?",
       'recommendation', ['category', 'use_case'], 1.0, 'best-in-class'),
    _t('rec-startup-01', "Recommend {category} tools for a growing startup focused on {use_case}",
       'recommendation', ['category', 'use_case'], 0.9, 'startup'),
    _t('rec-specific-01', "I need a {solution_type} that integrates well with our existing tech stack - recommendations?",
       'recommendation', ['solution_type'], 0.8, 'integration'),

    _t('exp-differences-01', "Explain the key differences between {category} platforms like {company} and {competitor1}",
       'explanatory', ['category', 'company', 'competitor1'], 0.9, 'differences'),
    _t('exp-market-01', "How has the {market} market evolved and what are the leading solutions?",
       'explanatory', ['market'], 0.8, 'market-evolution'),
    _t('exp-approach-01', "What are the different approaches to {problem_space} and their trade-offs?",
       'explanatory', ['problem_space'], 0.8, 'approaches'),
    _t('exp-choosing-01', "How do I choose between {category} solutions? What criteria matter most?",
       'explanatory', ['category'], 0.9, 'selection-criteria'),
]

CATEGORY_KEYWORDS = {
    'ai': ['ai', 'artificial intelligence', 'machine learning', 'ml'],
    'saas': ['saas', 'software as a service', 'cloud', 'platform'],
    'analytics': ['analytics', 'data', 'business intelligence', 'bi'],
    'marketing': ['marketing', 'advertising', 'campaign', 'email'],
    'sales': ['sales', 'crm', 'lead generation', 'prospecting'],
    'productivity': ['productivity', 'collaboration', 'workflow', 'automation'],
    'security': ['security', 'cybersecurity', 'privacy', 'compliance'],
    'fintech': ['fintech', 'finance', 'payment', 'banking'],
    'ecommerce': ['ecommerce', 'e-commerce', 'retail', 'shopping'],
}
USE_CASE_KEYWORDS = {
    'customer support': ['support', 'help desk', 'ticket', 'customer service'],
    'data analysis': ['analytics', 'data analysis', 'reporting', 'insights'],
    'project management': ['project', 'task', 'workflow', 'collaboration'],
    'marketing automation': ['marketing', 'email', 'campaign', 'automation'],
    'sales enablement': ['sales', 'lead', 'prospecting', 'crm'],
    'content creation': ['content', 'writing', 'creation', 'publishing'],
    'team communication': ['communication', 'chat', 'messaging', 'collaboration'],
}
PROBLEM_SPACES = {
    'ai': 'artificial intelligence and automation',
    'saas': 'software delivery and scalability',
    'analytics': 'data analysis and insights',
    'marketing': 'customer acquisition and engagement',
    'sales': 'revenue generation and customer relationships',
    'productivity': 'operational efficiency and collaboration',
    'security': 'data protection and compliance',
    'fintech': 'financial services and payments',
    'ecommerce': 'online commerce and customer experience',
}
SOLUTION_TYPES = {
    'ai': 'AI-powered platform',
    'saas': 'cloud-based solution',
    'analytics': 'data analytics platform',
    'marketing': 'marketing automation tool',
    'sales': 'sales enablement platform',
    'productivity': 'productivity suite',
    'security': 'security solution',
    'fintech': 'financial technology platform',
    'ecommerce': 'e-commerce platform',
}
MARKETS = {
    'ai': 'AI and machine learning',
    'saas': 'SaaS and cloud computing',
    'analytics': 'business intelligence and analytics',
    'marketing': 'marketing technology',
    'sales': 'sales technology',
    'productivity': 'productivity and collaboration',
    'security': 'cybersecurity',
    'fintech': 'financial technology',
    'ecommerce': 'e-commerce and retail technology',
}
ROLES = {
    'ai': 'AI Engineer',
    'saas': 'Product Manager',
    'analytics': 'Data Analyst',
    'marketing': 'Marketing Manager',
    'sales': 'Sales Director',
    'productivity': 'Operations Manager',
    'security': 'Security Officer',
    'fintech': 'Finance Director',
    'ecommerce': 'E-commerce Manager',
}
SIZE_TEXT = {
    'startup': 'startup',
    'small': 'small business',
    'medium': 'mid-size company',
    'enterprise': 'enterprise organization',
}
BUDGETS = {
    'startup': '$1,000-$5,000 monthly',
    'small': '$5,000-$15,000 monthly',
    'medium': '$15,000-$50,000 monthly',
    'enterprise': '$50,000+ monthly',
}
COMPETITOR_DEFAULTS = ['leading competitors', 'other market players', 'alternative solutions']
# fallback values that carry no company-specific signal
_GENERIC_VALUES = {'technology', 'business operations'}

def _contains_keyword(text: str, keyword: str) -> bool:
    # short keywords ("ai", "ml", "bi") only match whole words
    if len(keyword) <= 3:
        return re.search(rf'\b{re.escape(keyword)}\b', text) is not None
    return keyword in text

def infer_category(context: CompanyContext) -> str:
    text = f"{context.description or ''} {context.industry or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(_contains_keyword(text, k) for k in keywords):
            return category
    return 'technology'

def infer_use_case(description: Optional[str]) -> str:
    text = (description or '').lower()
    for use_case, keywords in USE_CASE_KEYWORDS.items():
        if any(k in text for k in keywords):
            return use_case
    return 'business operations'

def infer_company_size(description: Optional[str]) -> str:
    text = (description or '').lower()
    if 'startup' in text or 'early stage' in text:
        return 'startup'
    if 'enterprise' in text or 'large' in text:
        return 'enterprise'
    if 'small' in text or 'local' in text:
        return 'small'
    return 'medium'

def build_company_context(company: Dict[str, Any]) -> CompanyContext:
    domain = re.sub(r'^www\.', '', re.sub(r'^https?://', '', company['domain']))
    return CompanyContext(
        name=company['name'],
        domain=company['domain'],
        description=company.get('description'),
        industry=company.get('industry'),
        brand_name=domain.split('.')[0],
        competitors=list(company.get('competitors') or []),
        size=infer_company_size(company.get('description')),
    )

def variable_value(variable: str, context: CompanyContext) -> str:
    category = infer_category(context)
    competitors = context.competitors

    if variable == 'company':
        return context.name
    if variable == 'domain':
        return context.domain
    if variable == 'brand':
        return context.brand_name or context.name
    if variable == 'industry':
        return context.industry or 'technology'
    if variable == 'category':
        return category
    if variable == 'use_case':
        return infer_use_case(context.description)
    if variable == 'company_size':
        return SIZE_TEXT[context.size]
    if variable in ('competitor1', 'competitor2', 'competitor3'):
        idx = int(variable[-1]) - 1
        return competitors[idx] if len(competitors) > idx else COMPETITOR_DEFAULTS[idx]
    if variable == 'problem_space':
        return PROBLEM_SPACES.get(category, 'business optimization')
    if variable == 'solution_type':
        return SOLUTION_TYPES.get(category, 'software platform')
    if variable == 'market':
        return MARKETS.get(category, 'business technology')
    if variable == 'budget':
        return BUDGETS[context.size]
    if variable == 'role':
        return ROLES.get(category, 'Decision Maker')
    return variable

def question_distribution(total: int, types: List[str], weights: Dict[str, float] = None) -> Dict[str, int]:
    """max(1, round(total * share)) per type; the rounding difference goes to the first type"""
    weights = weights or get_config().get_question_distribution()
    total_weight = sum(weights[t] for t in types)
    distribution = {}
    for t in types:
        # round half up
        distribution[t] = max(1, int(total * weights[t] / total_weight + 0.5))
    diff = total - sum(distribution.values())
    if diff:
        distribution[types[0]] += diff
    return distribution

def confidence_score(template: QuestionTemplate, context: CompanyContext) -> float:
    score = 0.7
    for variable in template.variables:
        value = variable_value(variable, context)
        if value and value != variable and value not in _GENERIC_VALUES:
            score += 0.05
    if context.industry:
        score += 0.1
    if context.description:
        score += 0.1
    if context.competitors:
        score += 0.05
    return min(round(score, 4), 1.0)

class QuestionGenerator:
    def __init__(self, templates: List[QuestionTemplate] = None, rng: random.Random = None):
        self.templates = list(templates or TEMPLATES)
        self.rng = rng or random.Random()

    def templates_by_type(self, question_type: str) -> List[QuestionTemplate]:
        return [t for t in self.templates if t.type == question_type]

    def add_templates(self, templates: List[QuestionTemplate]):
        self.templates.extend(templates)

    @staticmethod
    def validate_request(company: Dict[str, Any], question_count: int) -> List[str]:
        errors = []
        if not (company or {}).get('name'):
            errors.append('Company name is required')
        if not (company or {}).get('domain'):
            errors.append('Company domain is required')
        if question_count < 1 or question_count > 100:
            errors.append('Question count must be between 1 and 100')
        return errors

    def generate(self, company: Dict[str, Any], question_count: int = 50,
                 question_types: List[str] = None) -> List[Dict[str, Any]]:
        errors = self.validate_request(company, question_count)
        if errors:
            raise QuestionGenerationError('; '.join(errors))

        types = list(question_types or QUESTION_TYPES)
        unknown = [t for t in types if t not in QUESTION_TYPES]
        if unknown:
            raise QuestionGenerationError(f"Unknown question types: {', '.join(unknown)}")

        context = build_company_context(company)
        questions = []
        for question_type, count in question_distribution(question_count, types).items():
            for template in self._select_weighted(self.templates_by_type(question_type), count):
                questions.append(self._customize(template, context))

        self.rng.shuffle(questions)
        logger.info(f"Generated {len(questions)} questions for {context.name}")
        return questions

    def _select_weighted(self, templates: List[QuestionTemplate], count: int) -> List[QuestionTemplate]:
        """Weighted draw without replacement; every template is used when count exceeds the pool"""
        if len(templates) <= count:
            return list(templates)

        remaining = list(templates)
        selected = []
        for _ in range(count):
            roll = self.rng.random() * sum(t.weight for t in remaining)
            for i, template in enumerate(remaining):
                roll -= template.weight
                if roll <= 0 or i == len(remaining) - 1:
                    selected.append(remaining.pop(i))
                    break
        return selected

    def _customize(self, template: QuestionTemplate, context: CompanyContext) -> Dict[str, Any]:
        text = template.template
        customization = {}
        for variable in template.variables:
            value = variable_value(variable, context)
            text = text.replace(f"{{{variable}}}", value)
            customization[variable] = value
        text = text.replace("{year}", str(datetime.utcnow().year))

        customization.update({
            'industry': context.industry,
            'company_size': context.size,
            'domain': context.domain,
        })
        return {
            'question': text,
            'type': template.type,
            'template_used': template.id,
            'customization_context': customization,
            'confidence_score': confidence_score(template, context),
        }
