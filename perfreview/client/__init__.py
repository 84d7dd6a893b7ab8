from perfreview.client.autosave import AutosavePolicy
from perfreview.client.buffer import DraftSnapshot, InMemoryWriteAheadBuffer, JsonFileWriteAheadBuffer, WriteAheadBuffer
from perfreview.client.form import EvaluationFormSession, FormState, FormStep, SubmitResult
from perfreview.client.gateway import ConnectivityError, EvaluationGateway, HttpEvaluationGateway, TransientServerError
