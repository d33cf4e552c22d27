import sys
from pathlib import Path

import pytest

# Add src to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jobforms.config import DetectionConfig
from jobforms.forms.engine import identify_platform
from jobforms.forms.scorer import ConfidenceScorer
from jobforms.forms.strategies import (
    CustomStrategy,
    IndeedStrategy,
    LinkedInStrategy,
    WorkdayStrategy,
    create_strategy,
)
from jobforms.forms.classifier import FieldClassifier
from jobforms.forms.strategies.common import ContainerAnalyzer, make_form_id, step_info, unique_containers
from jobforms.models import ErrorCode, FieldType, Platform
from jobforms.tree import parse_html


LINKEDIN_HTML = """
<html><head><title>Backend Engineer | Initech | LinkedIn</title></head>
<body>
  <h1 class="jobs-unified-top-card__job-title">Backend Engineer</h1>
  <a class="jobs-unified-top-card__company-name">Initech</a>
  <div class="jobs-easy-apply-modal">
    <div class="jobs-easy-apply-content" id="easy-apply">
      <div class="jobs-easy-apply-form-element">
        <label class="fb-form-element-label">First name</label>
        <input type="text" id="fn" required>
      </div>
      <div class="jobs-easy-apply-form-element">
        <label class="fb-form-element-label">Last name</label>
        <input type="text" id="ln" required>
      </div>
      <div class="jobs-easy-apply-form-element">
        <label class="fb-form-element-label">Email address</label>
        <input type="email" id="em">
      </div>
      <div class="jobs-easy-apply-form-element jobs-easy-apply-form-element--required">
        <label class="fb-form-element-label">Mobile phone number</label>
        <input type="tel" id="ph">
      </div>
      <button aria-label="Continue to next step">Next</button>
    </div>
  </div>
</body></html>
"""

INDEED_HTML = """
<html><head><title>Warehouse Associate - Indeed</title></head>
<body>
  <h1 class="jobsearch-JobInfoHeader-title">Warehouse Associate</h1>
  <div class="ia-IndeedApplyForm" id="ia-form">
    <div class="ia-FormField ia-FormField--required">
      <span class="ia-FormField-label">Full name</span>
      <input data-testid="input-name" type="text">
    </div>
    <div class="ia-FormField">
      <span class="ia-FormField-label">Email</span>
      <input name="email" type="email">
    </div>
    <div class="ia-FormField">
      <span class="ia-FormField-label">Phone</span>
      <input id="phone" type="tel">
    </div>
  </div>
</body></html>
"""

EXTERNAL_HTML = """
<html><head><title>Apply - Globex</title></head>
<body>
  <form id="globex-apply">
    <label for="n">Name</label><input id="n" name="n">
    <label for="e">Email</label><input id="e" name="e" type="email">
    <label for="r">Resume</label><input id="r" name="r" type="file">
  </form>
  <form id="newsletter"><input name="email" type="email"></form>
</body></html>
"""

WORKDAY_HTML = """
<html><head><title>Careers at Acme</title></head>
<body class="wd-app">
  <h1 data-automation-id="jobPostingHeader">Staff Accountant</h1>
  <div data-automation-id="progressBar">
    <span data-automation-id="currentStep">Step 2 of 4</span>
  </div>
  <div data-automation-id="applicationForm" id="wd-app">
    <div data-automation-id="formField-firstName">
      <label data-automation-id="field-label">Given Name(s)</label>
      <input data-automation-id="legalNameSection_firstName" data-required="true" type="text">
    </div>
    <div data-automation-id="formField-lastName">
      <label data-automation-id="field-label">Family Name</label>
      <input data-automation-id="legalNameSection_lastName" data-required="true" type="text">
    </div>
    <div data-automation-id="formField-source">
      <input data-automation-id="sourceDropdown" type="text">
    </div>
    <div data-automation-id="formField-email">
      <label data-automation-id="field-label">Email Address</label>
      <input data-automation-id="email" type="email">
    </div>
    <button data-automation-id="bottom-navigation-next-button">Save and Continue</button>
  </div>
</body></html>
"""


def _config(**kwargs) -> DetectionConfig:
    return DetectionConfig(**kwargs)


def test_linkedin_easy_apply_modal():
    tree = parse_html(LINKEDIN_HTML, url="https://www.linkedin.com/jobs/view/3712/")
    strategy = LinkedInStrategy(ConfidenceScorer(), _config())
    assert strategy.is_applicable(tree)

    result = strategy.detect(tree)
    assert len(result.forms) == 1
    form = result.forms[0]
    assert form.platform == Platform.LINKEDIN
    assert form.form_id == "linkedin_easy_apply_easy_apply_0"
    labels = {f.id: f.label for f in form.fields}
    assert labels == {"fn": "First name", "ln": "Last name", "em": "Email address", "ph": "Mobile phone number"}
    assert {f.id for f in form.fields if f.required} == {"fn", "ln", "ph"}
    assert form.is_multi_step and form.current_step == 1
    assert form.job_context.title == "Backend Engineer"
    assert form.job_context.company == "Initech"
    assert result.platform_data == {"has_easy_apply": True, "modal_visible": True, "form_visible": True}


def test_linkedin_ignores_other_hosts():
    tree = parse_html(LINKEDIN_HTML, url="https://notlinkedin.com/jobs/view/1/")
    strategy = LinkedInStrategy(ConfidenceScorer(), _config())
    assert not strategy.is_applicable(tree)
    assert strategy.detect(tree).forms == []


def test_indeed_apply_form_on_regional_host():
    tree = parse_html(INDEED_HTML, url="https://uk.indeed.com/viewjob?jk=abc")
    strategy = IndeedStrategy(ConfidenceScorer(), _config())
    result = strategy.detect(tree)

    assert len(result.forms) == 1
    form = result.forms[0]
    assert form.form_id == "indeed_form_ia_form_0"
    assert [f.label for f in form.fields] == ["Full name", "Email", "Phone"]
    assert [f.selector for f in form.fields] == ['[data-testid="input-name"]', '[name="email"]', "#phone"]
    assert form.fields[0].required
    assert result.platform_data["form_type"] == "indeed_apply"
    assert result.platform_data["has_external_application"] is False


def test_indeed_external_application_via_referrer():
    tree = parse_html(
        EXTERNAL_HTML,
        url="https://careers.globex.com/apply/17",
        referrer="https://www.indeed.com/viewjob?jk=17",
    )
    assert identify_platform(tree) == Platform.CUSTOM
    strategy = IndeedStrategy(ConfidenceScorer(), _config())
    assert strategy.has_external_application(tree)

    result = strategy.detect(tree)
    assert [f.form_id for f in result.forms] == ["indeed_external_globex_apply_0"]
    assert result.platform_data["form_type"] == "external_redirect"


def test_workday_hooks_and_steps():
    tree = parse_html(WORKDAY_HTML, url="https://acme.wd5.myworkdayjobs.com/en-US/careers/job/apply")
    strategy = WorkdayStrategy(ConfidenceScorer(), _config())
    assert strategy.is_applicable(tree)

    result = strategy.detect(tree)
    assert len(result.forms) == 1
    form = result.forms[0]
    assert form.form_id == "workday_form_wd_app_0"
    fields = {f.selector: f for f in form.fields}
    first = fields['[data-automation-id="legalNameSection_firstName"]']
    assert first.label == "Given Name(s)"
    assert first.required
    source = fields['[data-automation-id="sourceDropdown"]']
    assert source.type == FieldType.SELECT
    assert source.label == "Source Dropdown"
    assert not fields['[data-automation-id="email"]'].required

    assert form.is_multi_step
    assert (form.current_step, form.total_steps) == (2, 4)
    assert result.platform_data["portal_type"] == "application"
    assert result.platform_data["has_multi_step_process"] is True


def test_workday_detected_from_markup_alone():
    tree = parse_html(WORKDAY_HTML, url="https://jobs.acme.com/opening/9")
    assert WorkdayStrategy(ConfidenceScorer(), _config()).is_applicable(tree)
    assert identify_platform(tree) == Platform.WORKDAY


def _read_fixture(name: str) -> str:
    path = Path(__file__).parent / "fixtures" / name
    return path.read_text(encoding="utf-8")


def test_custom_strategy_on_career_page():
    tree = parse_html(_read_fixture("careers_apply.html"), url="https://acme.example.com/careers/apply")
    strategy = CustomStrategy(ConfidenceScorer(), _config())
    assert strategy.is_applicable(tree)

    result = strategy.detect(tree)
    assert [f.form_id for f in result.forms] == ["custom_form_application_0"]
    assert len(result.forms[0].fields) == 7
    assert 0.0 < result.platform_data["page_confidence"] <= 1.0
    assert "job_keyword:career" in result.platform_data["detected_patterns"]
    assert result.forms[0].job_context.company == "Acme Corp"


def test_custom_strategy_rejects_unrelated_pages():
    html = """
    <html><head><title>Chocolate Cake</title></head><body>
      <p>Mix flour and sugar. Bake for 30 minutes.</p>
      <form><input name="a"><input name="b"><input name="c"></form>
    </body></html>
    """
    tree = parse_html(html, url="https://bakery.example.com/recipes/cake")
    strategy = CustomStrategy(ConfidenceScorer(), _config())
    assert not strategy.is_applicable(tree)
    assert strategy.detect(tree).forms == []


def test_custom_strategy_respects_min_fields_and_job_context_switch():
    tree = parse_html(_read_fixture("careers_apply.html"), url="https://acme.example.com/careers/apply")
    too_strict = CustomStrategy(ConfidenceScorer(), _config(min_fields_per_form=8))
    assert too_strict.detect(tree).forms == []

    no_context = CustomStrategy(ConfidenceScorer(), _config(enable_job_context_extraction=False))
    assert no_context.detect(tree).forms[0].job_context is None


def test_create_strategy():
    scorer = ConfidenceScorer()
    assert isinstance(create_strategy(Platform.WORKDAY, scorer, _config()), WorkdayStrategy)
    assert create_strategy(Platform.CUSTOM, scorer, _config()).platform == Platform.CUSTOM
    with pytest.raises(ValueError):
        create_strategy("greenhouse", scorer, _config())


def test_unique_containers_prefers_forms_then_outermost():
    tree = parse_html(
        """
        <div id="outer"><div id="inner"><input><input><input></div></div>
        <section id="wrap"><form id="f"><input><input><input></form></section>
        """
    )
    candidates = [tree.find_by_id(i) for i in ("inner", "outer", "wrap", "f")]
    kept = unique_containers(candidates)
    assert [n.attr("id") for n in kept] == ["outer", "f"]


def test_make_form_id_is_sanitized():
    tree = parse_html('<div class="apply form"></div>')
    assert make_form_id("custom_form", tree.select_one("div"), 3) == "custom_form_apply_form_3"


def test_step_info_reads_progress_text():
    tree = parse_html(
        """
        <form>
          <div class="progress">Step 3 of 5</div>
          <input><input><input>
          <button>Next</button>
        </form>
        """
    )
    info = step_info(tree.select_one("form"))
    assert info.is_multi_step
    assert (info.current_step, info.total_steps) == (3, 5)


NESTED_LINKEDIN_HTML = """
<html><body>
  <div class="jobs-easy-apply-modal">
    <div class="jobs-easy-apply-content" id="content">
      <div class="jobs-easy-apply-form-container">
        <label for="a">First name</label><input id="a">
        <label for="b">Last name</label><input id="b">
        <label for="c">Email</label><input id="c" type="email">
        <label for="d">Phone</label><input id="d" type="tel">
      </div>
    </div>
  </div>
</body></html>
"""

NESTED_WORKDAY_HTML = """
<html><body>
  <div data-automation-id="formContainer" id="outer">
    <div data-uxi-element-id="formSection">
      <input data-automation-id="firstName" type="text">
      <input data-automation-id="lastName" type="text">
      <input data-automation-id="email" type="email">
    </div>
  </div>
</body></html>
"""


def test_linkedin_nested_containers_yield_one_form():
    tree = parse_html(NESTED_LINKEDIN_HTML, url="https://www.linkedin.com/jobs/view/77/")
    result = LinkedInStrategy(ConfidenceScorer(), _config()).detect(tree)
    assert [f.form_id for f in result.forms] == ["linkedin_easy_apply_content_0"]
    assert [f.id for f in result.forms[0].fields] == ["a", "b", "c", "d"]


def test_workday_nested_containers_yield_one_form():
    tree = parse_html(NESTED_WORKDAY_HTML, url="https://acme.wd1.myworkdayjobs.com/careers/job/apply")
    result = WorkdayStrategy(ConfidenceScorer(), _config()).detect(tree)
    assert [f.form_id for f in result.forms] == ["workday_form_outer_0"]
    assert len(result.forms[0].fields) == 3


class _FailingClassifier:
    def __init__(self, inner: FieldClassifier, bad_id: str):
        self.inner = inner
        self.bad_id = bad_id

    def classify_all(self, container):
        if container.attr("id") == self.bad_id:
            raise ValueError("broken markup")
        return self.inner.classify_all(container)


def test_failing_container_is_reported_and_others_survive():
    tree = parse_html(EXTERNAL_HTML.replace('id="newsletter"><input name="email" type="email">', 'id="second"><input name="x"><input name="y"><input name="z">'))
    first, second = tree.find_by_id("globex-apply"), tree.find_by_id("second")
    analyzer = ContainerAnalyzer(Platform.CUSTOM, ConfidenceScorer(), _config())
    classifier = _FailingClassifier(FieldClassifier(tree), "globex-apply")

    result = analyzer.analyze(tree, [(first, "form_one"), (second, "form_two")], classifier)
    assert [f.form_id for f in result.forms] == ["form_two"]
    assert [e.code for e in result.errors] == [ErrorCode.FORM_ANALYSIS_ERROR]
    assert "broken markup" in result.errors[0].message
    assert result.errors[0].selector == "#globex-apply"
