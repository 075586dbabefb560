# Исключения ассемблера TDSP.
#
# AsmError        базовый класс, хранит сообщение и (если известно) позицию
# LexError        строка исходника не разобрана лексером
# TableBuildError ошибка в тексте таблицы команд (фатально при старте)
# NoRowMatched    ни одна строка таблицы не подошла к строке исходника
#
# Несовпадение отдельной строки таблицы исключением не является:
# движок просто возвращает None и переходит к следующей строке.


class AsmError(Exception):
    def __init__(self, message: str, line=None, column=None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column

    def __str__(self):
        if self.line is None:
            return self.message
        if self.column is None:
            return f"строка {self.line}: {self.message}"
        return f"строка {self.line}, столбец {self.column}: {self.message}"


class LexError(AsmError):
    pass


class TableBuildError(AsmError):
    pass


class NoRowMatched(AsmError):
    pass
