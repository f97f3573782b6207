"""Canonical (v3) models for configs, specs, tests, steps and contexts."""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Platform = Literal["linux", "mac", "windows"]
BrowserName = Literal["chrome", "firefox", "safari", "webkit"]
Overwrite = Literal["true", "false", "aboveVariation"]
WaitValue = Union[bool, int, float, str]

STEP_ACTIONS = (
    "checkLink",
    "click",
    "dragAndDrop",
    "find",
    "goTo",
    "httpRequest",
    "loadCookie",
    "loadVariables",
    "record",
    "runCode",
    "runShell",
    "saveCookie",
    "screenshot",
    "stopRecord",
    "type",
    "wait",
)
CODE_LANGUAGES = {"python": "python", "py": "python", "javascript": "javascript", "js": "javascript", "bash": "bash"}
HTTP_METHODS = {"get", "post", "put", "patch", "delete", "head", "options"}


class StrictModel(BaseModel):
    """Base model rejecting unknown keys so legacy shapes fall through to migration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ElementLocator(StrictModel):
    """Ways of identifying an element on the page."""

    selector: Optional[str] = None
    elementText: Optional[str] = None
    elementId: Optional[str] = None
    elementTestId: Optional[str] = None
    elementClass: Optional[Union[str, list[str]]] = None
    elementAttribute: Optional[dict[str, Union[str, int, float, bool]]] = None
    elementAria: Optional[str] = None


class SourceIntegration(StrictModel):
    """Where a captured artifact came from in an external CMS."""

    type: Literal["heretto"]
    integrationName: str
    fileId: Optional[str] = None
    filePath: Optional[str] = None
    contentPath: Optional[str] = None


class OpenApi(StrictModel):
    """OpenAPI description reference and request options."""

    name: Optional[str] = None
    descriptionPath: Optional[str] = None
    definition: Optional[dict[str, Any]] = None
    operationId: Optional[str] = None
    server: Optional[str] = None
    validateAgainstSchema: Literal["request", "response", "both", "none"] = "both"
    mockResponse: bool = False
    statusCode: Optional[int] = None
    useExample: Literal["request", "response", "both", "none"] = "none"
    exampleKey: str = ""
    headers: Optional[dict[str, str]] = None


class CheckLinkDetailed(StrictModel):
    url: str
    origin: Optional[str] = None
    statusCodes: Union[int, list[int]] = Field(default_factory=lambda: [200, 301, 302, 307, 308])


class ClickDetailed(ElementLocator):
    button: Literal["left", "right", "middle"] = "left"


class TypeDetailed(ElementLocator):
    keys: Union[str, list[str]]
    inputDelay: int = 100


class FindDetailed(ElementLocator):
    timeout: int = 5000
    moveTo: Optional[bool] = None
    click: Optional[Union[bool, ClickDetailed]] = None
    type: Optional[Union[str, list[str], TypeDetailed]] = None


class DragAndDropDetailed(StrictModel):
    source: Union[str, ElementLocator]
    target: Union[str, ElementLocator]
    duration: int = 1000


class GoToWaitUntil(StrictModel):
    networkIdleTime: Optional[int] = 500
    domIdleTime: Optional[int] = 1000
    find: Optional[ElementLocator] = None


class GoToDetailed(StrictModel):
    url: str
    origin: Optional[str] = None
    timeout: int = 30000
    waitUntil: GoToWaitUntil = Field(default_factory=GoToWaitUntil)


class HttpRequestPayload(StrictModel):
    parameters: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = None


class HttpResponseExpectation(StrictModel):
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    required: list[str] = Field(default_factory=list)


class _OutputCapture(StrictModel):
    """Fields shared by actions whose output is compared to a stored baseline."""

    path: Optional[str] = None
    directory: Optional[str] = None
    maxVariation: float = Field(default=0, ge=0, le=1)
    overwrite: Overwrite = "aboveVariation"


class HttpRequestDetailed(_OutputCapture):
    url: Optional[str] = None
    openApi: Optional[OpenApi] = None
    method: str = "get"
    request: Optional[HttpRequestPayload] = None
    response: Optional[HttpResponseExpectation] = None
    statusCodes: list[int] = Field(default_factory=lambda: [200, 201])
    allowAdditionalFields: bool = True
    timeout: int = 60000

    @field_validator("method")
    @classmethod
    def _lower_method(cls, value: str) -> str:
        method = value.lower()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method '{value}'")
        return method

    @model_validator(mode="after")
    def _needs_target(self) -> "HttpRequestDetailed":
        if not self.url and not self.openApi:
            raise ValueError("requires 'url' or 'openApi'")
        return self


class RunShellDetailed(_OutputCapture):
    command: str
    args: list[str] = Field(default_factory=list)
    workingDirectory: str = "."
    exitCodes: list[int] = Field(default_factory=lambda: [0])
    stdio: Optional[str] = None
    timeout: int = 60000


class RunCodeDetailed(_OutputCapture):
    language: str
    code: str
    args: list[str] = Field(default_factory=list)
    workingDirectory: str = "."
    exitCodes: list[int] = Field(default_factory=lambda: [0])
    stdio: Optional[str] = None
    timeout: int = 60000

    @field_validator("language")
    @classmethod
    def _known_language(cls, value: str) -> str:
        language = CODE_LANGUAGES.get(value.lower())
        if language is None:
            raise ValueError(f"unsupported language '{value}'")
        return language


class CropDetailed(ElementLocator):
    padding: Union[int, dict[str, int]] = 0


class ScreenshotDetailed(StrictModel):
    path: Optional[str] = None
    directory: Optional[str] = None
    maxVariation: float = Field(default=0.05, ge=0, le=1)
    overwrite: Overwrite = "aboveVariation"
    crop: Optional[Union[str, CropDetailed]] = None
    sourceIntegration: Optional[SourceIntegration] = None


class RecordDetailed(StrictModel):
    path: Optional[str] = None
    directory: Optional[str] = None
    overwrite: Literal["true", "false"] = "false"


class CookieDetailed(StrictModel):
    name: Optional[str] = None
    path: Optional[str] = None
    directory: Optional[str] = None
    variable: Optional[str] = None
    domain: Optional[str] = None
    overwrite: Literal["true", "false"] = "false"


class Step(StrictModel):
    """One action plus optional variable captures."""

    stepId: Optional[str] = None
    description: Optional[str] = None
    unsafe: Optional[bool] = None
    outputs: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, str] = Field(default_factory=dict)
    breakpoint: bool = False
    location: Optional[dict[str, Any]] = None

    checkLink: Optional[Union[str, CheckLinkDetailed]] = None
    click: Optional[Union[bool, str, ClickDetailed]] = None
    dragAndDrop: Optional[DragAndDropDetailed] = None
    find: Optional[Union[str, FindDetailed]] = None
    goTo: Optional[Union[str, GoToDetailed]] = None
    httpRequest: Optional[Union[str, HttpRequestDetailed]] = None
    loadCookie: Optional[Union[str, CookieDetailed]] = None
    loadVariables: Optional[str] = None
    record: Optional[Union[bool, str, RecordDetailed]] = None
    runCode: Optional[RunCodeDetailed] = None
    runShell: Optional[Union[str, RunShellDetailed]] = None
    saveCookie: Optional[Union[str, CookieDetailed]] = None
    screenshot: Optional[Union[bool, str, ScreenshotDetailed]] = None
    stopRecord: Optional[bool] = None
    type: Optional[Union[str, list[str], TypeDetailed]] = None
    wait: Optional[WaitValue] = None

    @model_validator(mode="after")
    def _exactly_one_action(self) -> "Step":
        present = [name for name in STEP_ACTIONS if getattr(self, name) is not None]
        if len(present) != 1:
            raise ValueError(f"step must define exactly one action, found {len(present)}")
        return self

    @property
    def action(self) -> str:
        return next(name for name in STEP_ACTIONS if getattr(self, name) is not None)


class BrowserWindow(StrictModel):
    width: Optional[int] = None
    height: Optional[int] = None


class Browser(StrictModel):
    """Browser target for a context."""

    name: BrowserName
    headless: bool = True
    window: Optional[BrowserWindow] = None
    viewport: Optional[BrowserWindow] = None


class Context(StrictModel):
    """Declared (possibly abstract) execution target."""

    contextId: Optional[str] = None
    platforms: Optional[Union[Platform, list[Platform]]] = None
    browsers: Optional[Union[BrowserName, Browser, list[Union[BrowserName, Browser]]]] = None


class ResolvedContext(StrictModel):
    """Concrete execution target carrying its own copy of the test's steps."""

    contextId: Optional[str] = None
    platform: Optional[Platform] = None
    browser: Optional[Browser] = None
    unsafe: bool = False
    openApi: list[OpenApi] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)


class Test(StrictModel):
    """Ordered sequence of steps."""

    testId: Optional[str] = None
    description: Optional[str] = None
    contentPath: Optional[str] = None
    detectSteps: Optional[bool] = None
    runOn: Optional[list[Context]] = None
    openApi: Optional[list[OpenApi]] = None
    before: Optional[str] = None
    after: Optional[str] = None
    steps: Optional[list[Step]] = Field(default=None, min_length=1)
    contexts: Optional[list[ResolvedContext]] = None

    @model_validator(mode="after")
    def _has_work(self) -> "Test":
        if self.steps is None and self.contexts is None:
            raise ValueError("test requires 'steps' or 'contexts'")
        return self


class Spec(StrictModel):
    """Named collection of tests sharing a source file."""

    specId: Optional[str] = None
    description: Optional[str] = None
    contentPath: Optional[str] = None
    runOn: Optional[list[Context]] = None
    openApi: Optional[list[OpenApi]] = None
    tests: list[Test] = Field(min_length=1)


class InlineStatements(StrictModel):
    testStart: Optional[Union[str, list[str]]] = None
    testEnd: Optional[Union[str, list[str]]] = None
    ignoreStart: Optional[Union[str, list[str]]] = None
    ignoreEnd: Optional[Union[str, list[str]]] = None
    step: Optional[Union[str, list[str]]] = None


class MarkupRule(StrictModel):
    """Regex rule turning prose into steps."""

    name: str
    regex: Union[str, list[str]]
    actions: Optional[Union[str, list[Union[str, dict[str, Any]]]]] = None
    batchMatches: bool = False


class FileType(StrictModel):
    """How to find tests inside one kind of document."""

    name: Optional[str] = None
    extends: Optional[str] = None
    extensions: Optional[Union[str, list[str]]] = None
    inlineStatements: Optional[InlineStatements] = None
    markup: Optional[list[MarkupRule]] = None
    runShell: Optional[Union[str, RunShellDetailed]] = None

    @model_validator(mode="after")
    def _extensions_or_extends(self) -> "FileType":
        if self.extensions is None and self.extends is None:
            raise ValueError("file type requires 'extensions' or 'extends'")
        return self


class DocDetectiveApi(StrictModel):
    apiKey: Optional[str] = None


class Integrations(StrictModel):
    openApi: Optional[list[OpenApi]] = None
    docDetectiveApi: Optional[DocDetectiveApi] = None
    heretto: Optional[list[dict[str, Any]]] = None


class Config(StrictModel):
    """Run-wide settings."""

    configId: Optional[str] = None
    input: Union[str, list[str]] = "."
    output: str = "."
    recursive: bool = True
    relativePathBase: Literal["cwd", "file"] = "file"
    loadVariables: Optional[str] = None
    origin: Optional[str] = None
    beforeAny: Optional[Union[str, list[str]]] = None
    afterAll: Optional[Union[str, list[str]]] = None
    detectSteps: bool = True
    allowUnsafeSteps: Optional[bool] = None
    logLevel: Literal["silent", "error", "warning", "info", "debug"] = "info"
    runOn: Optional[list[Context]] = None
    fileTypes: list[Union[str, FileType]] = Field(
        default_factory=lambda: ["markdown", "asciidoc", "html", "dita"]
    )
    integrations: Optional[Integrations] = None
    telemetry: Optional[dict[str, Any]] = None
    concurrentRunners: Optional[Union[bool, int]] = None
    apiMaxWaitTime: int = 600
    debug: Union[bool, Literal["stepThrough"]] = False
    environment: Optional[dict[str, Any]] = None
    herettoPathMapping: Optional[dict[str, Any]] = Field(default=None, alias="_herettoPathMapping")


class ResolvedTests(StrictModel):
    """Fully expanded artifact handed to the execution engine."""

    resolvedTestsId: Optional[str] = None
    config: Config
    specs: list[Spec]
