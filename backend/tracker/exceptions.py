# tracker/exceptions.py


class TrackerError(Exception):
    """ An error caused by the request; rendered as a 400 JSON body. """

    status_code = 400

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])

    def as_dict(self):
        payload = {'success': False, 'message': self.message}
        if self.errors:
            payload['errors'] = self.errors
        return payload


class TrackerImportError(TrackerError):
    """ Base class for every import failure surfaced to the caller. """


class BadPayload(TrackerError):
    pass


class CsvParseError(TrackerImportError):
    """ The file could not be parsed. Carries the file diagnosis. """

    def __init__(self, message, diagnosis=None):
        super().__init__(message)
        self.diagnosis = diagnosis

    def as_dict(self):
        payload = super().as_dict()
        if self.diagnosis is not None:
            payload['diagnosis'] = self.diagnosis.as_dict()
        return payload


class UnknownDataType(TrackerImportError):
    def __init__(self, headers):
        super().__init__("CSVの形式を判定できませんでした。データ型を手動で選択してください。")
        self.headers = list(headers)

    def as_dict(self):
        payload = super().as_dict()
        payload['error'] = f"検出されたヘッダー: {', '.join(self.headers)}"
        return payload


class NoValidRows(TrackerImportError):
    """ Every row failed validation. """

    def __init__(self, errors):
        super().__init__("有効なデータが見つかりませんでした", errors)

    def as_dict(self):
        return {'success': False, 'message': self.message, 'validationErrors': self.errors}


class ImportAborted(TrackerImportError):
    """ A row failed during reconciliation; the whole batch was rolled back. """


class ImportTimeout(ImportAborted):
    pass


class WorkbookImportError(TrackerImportError):
    pass


class MissingReference(LookupError):
    """ A row points at a campaign or client that does not exist. """
