"""Models for the v2 document format still accepted on input."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field

from .models import StrictModel

LegacyOverwrite = Literal["true", "false", "byVariation"]


class VariableCapture(StrictModel):
    name: str
    regex: str


class ResponseCapture(StrictModel):
    name: str
    jqFilter: str


class _LegacyStep(StrictModel):
    id: Optional[str] = None
    description: Optional[str] = None


class GoToV2(_LegacyStep):
    action: Literal["goTo"]
    url: str
    origin: Optional[str] = None


class CheckLinkV2(_LegacyStep):
    action: Literal["checkLink"]
    url: str
    origin: Optional[str] = None
    statusCodes: Optional[list[int]] = None


class TypeKeysOptions(StrictModel):
    keys: Union[str, list[str]]
    delay: Optional[int] = None


class FindV2(_LegacyStep):
    action: Literal["find"]
    selector: str
    matchText: Optional[str] = None
    timeout: Optional[int] = None
    moveTo: Optional[bool] = None
    click: Optional[bool] = None
    typeKeys: Optional[Union[str, list[str], TypeKeysOptions]] = None
    setVariables: Optional[list[VariableCapture]] = None


class OpenApiV2(StrictModel):
    name: Optional[str] = None
    descriptionPath: Optional[str] = None
    definition: Optional[dict[str, Any]] = None
    operationId: Optional[str] = None
    server: Optional[str] = None
    validateAgainstSchema: Optional[Literal["request", "response", "both", "none"]] = None
    mockResponse: Optional[bool] = None
    statusCode: Optional[int] = None
    useExample: Optional[Literal["request", "response", "both", "none"]] = None
    exampleKey: Optional[str] = None
    requestHeaders: Optional[dict[str, str]] = None


class HttpRequestV2(_LegacyStep):
    action: Literal["httpRequest"]
    url: Optional[str] = None
    openApi: Optional[OpenApiV2] = None
    method: Optional[str] = None
    requestHeaders: Optional[dict[str, Any]] = None
    requestParams: Optional[dict[str, Any]] = None
    requestData: Any = None
    responseHeaders: Optional[dict[str, Any]] = None
    responseData: Any = None
    statusCodes: Optional[list[int]] = None
    allowAdditionalFields: Optional[bool] = None
    timeout: Optional[int] = None
    savePath: Optional[str] = None
    saveDirectory: Optional[str] = None
    maxVariation: Optional[float] = Field(default=None, ge=0, le=100)
    overwrite: Optional[LegacyOverwrite] = None
    envsFromResponseData: Optional[list[ResponseCapture]] = None


class RunShellV2(_LegacyStep):
    action: Literal["runShell"]
    command: str
    args: Optional[list[str]] = None
    workingDirectory: Optional[str] = None
    exitCodes: Optional[list[int]] = None
    output: Optional[str] = None
    savePath: Optional[str] = None
    saveDirectory: Optional[str] = None
    maxVariation: Optional[float] = Field(default=None, ge=0, le=100)
    overwrite: Optional[LegacyOverwrite] = None
    timeout: Optional[int] = None
    setVariables: Optional[list[VariableCapture]] = None


class RunCodeV2(_LegacyStep):
    action: Literal["runCode"]
    language: str
    code: str
    args: Optional[list[str]] = None
    workingDirectory: Optional[str] = None
    exitCodes: Optional[list[int]] = None
    output: Optional[str] = None
    savePath: Optional[str] = None
    saveDirectory: Optional[str] = None
    maxVariation: Optional[float] = Field(default=None, ge=0, le=100)
    overwrite: Optional[LegacyOverwrite] = None
    timeout: Optional[int] = None
    setVariables: Optional[list[VariableCapture]] = None


class SaveScreenshotV2(_LegacyStep):
    action: Literal["saveScreenshot"]
    path: Optional[str] = None
    directory: Optional[str] = None
    maxVariation: Optional[float] = Field(default=None, ge=0, le=100)
    overwrite: Optional[LegacyOverwrite] = None
    crop: Optional[dict[str, Any]] = None


class SetVariablesV2(_LegacyStep):
    action: Literal["setVariables"]
    path: str


class StartRecordingV2(_LegacyStep):
    action: Literal["startRecording"]
    path: Optional[str] = None
    directory: Optional[str] = None
    overwrite: Optional[Literal["true", "false"]] = None


class StopRecordingV2(_LegacyStep):
    action: Literal["stopRecording"]


class TypeKeysV2(_LegacyStep):
    action: Literal["typeKeys"]
    keys: Union[str, list[str]]
    delay: Optional[int] = None


class WaitV2(_LegacyStep):
    action: Literal["wait"]
    duration: Optional[int] = None


LegacyStep = Annotated[
    Union[
        CheckLinkV2,
        FindV2,
        GoToV2,
        HttpRequestV2,
        RunCodeV2,
        RunShellV2,
        SaveScreenshotV2,
        SetVariablesV2,
        StartRecordingV2,
        StopRecordingV2,
        TypeKeysV2,
        WaitV2,
    ],
    Field(discriminator="action"),
]


class AppOptionsV2(StrictModel):
    width: Optional[int] = None
    height: Optional[int] = None
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    headless: Optional[bool] = None
    driverPath: Optional[str] = None


class AppV2(StrictModel):
    name: Literal["chrome", "firefox", "safari", "edge"]
    path: Optional[str] = None
    options: Optional[AppOptionsV2] = None


class ContextV2(StrictModel):
    app: AppV2
    platforms: Optional[Union[str, list[str]]] = None


class TestV2(StrictModel):
    id: Optional[str] = None
    description: Optional[str] = None
    file: Optional[str] = None
    detectSteps: Optional[bool] = None
    contexts: Optional[list[ContextV2]] = None
    openApi: Optional[list[OpenApiV2]] = None
    setup: Optional[str] = None
    cleanup: Optional[str] = None
    steps: list[LegacyStep] = Field(min_length=1)


class SpecV2(StrictModel):
    id: Optional[str] = None
    description: Optional[str] = None
    file: Optional[str] = None
    contexts: Optional[list[ContextV2]] = None
    openApi: Optional[list[OpenApiV2]] = None
    tests: list[TestV2] = Field(min_length=1)


class MarkupV2(StrictModel):
    name: str
    regex: Union[str, list[str]]
    actions: Optional[list[Union[str, dict[str, Any]]]] = None


class FileTypeV2(StrictModel):
    name: Optional[str] = None
    extensions: list[str]
    testStartStatementOpen: str
    testStartStatementClose: str
    testEndStatement: str
    testIgnoreStatement: str
    stepStatementOpen: str
    stepStatementClose: str
    markup: Optional[list[MarkupV2]] = None


class RunTestsV2(StrictModel):
    input: Optional[Union[str, list[str]]] = None
    output: Optional[str] = None
    recursive: Optional[bool] = None
    detectSteps: Optional[bool] = None
    setup: Optional[Union[str, list[str]]] = None
    cleanup: Optional[Union[str, list[str]]] = None
    contexts: Optional[list[ContextV2]] = None
    mediaDirectory: Optional[str] = None
    downloadDirectory: Optional[str] = None


class IntegrationsV2(StrictModel):
    openApi: Optional[list[OpenApiV2]] = None


class ConfigV2(StrictModel):
    envVariables: Optional[str] = None
    input: Optional[Union[str, list[str]]] = None
    output: Optional[str] = None
    recursive: Optional[bool] = None
    relativePathBase: Optional[Literal["cwd", "file"]] = None
    runTests: Optional[RunTestsV2] = None
    logLevel: Optional[Literal["silent", "error", "warning", "info", "debug"]] = None
    telemetry: Optional[dict[str, Any]] = None
    integrations: Optional[IntegrationsV2] = None
    fileTypes: Optional[list[FileTypeV2]] = None
